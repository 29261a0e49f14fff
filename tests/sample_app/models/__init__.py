"""Entity declarations of the sample application used by discovery tests."""
