from catalog.entities import EntityDefinition

# Shadowed by billing.models, never discovered
ENTITIES = [EntityDefinition(name="LegacyInvoice", table="legacy_invoices", fillable=["number"])]
