from catalog.entities import EntityDefinition

ENTITIES = [
    EntityDefinition(
        name="Invoice",
        table="invoices",
        fillable=["number", "total", "paid"],
        casts={"total": "decimal:2", "paid": "bool"},
        key_type="uuid",
    ),
]
