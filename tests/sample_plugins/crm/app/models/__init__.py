from catalog.entities import EntityDefinition

ENTITIES = [
    EntityDefinition(name="Contact", table="contacts", fillable=["name", "phone"], key_type="string"),
]
