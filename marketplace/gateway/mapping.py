"""
Traduction entre les entités du workflow (camelCase) et les enregistrements
du stockage (snake_case: `supplier_price`, `margin_percent`, `final_price`, `rfq_id`...).

C'est le seul endroit où les noms de champs sont traduits. Chaque entité a une
table de correspondance exhaustive et bijective, vérifiée au chargement du module.
"""
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Type, Union

from marketplace.margins.models import InheritedMargin, ManualMargin, MarginSetting
from marketplace.orders.models import Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ, RFQItem
from marketplace.schemas import EntityModel
from marketplace.users.models import User


class FieldMapping(NamedTuple):
    field: str   # Nom camelCase côté entité
    column: str  # Nom snake_case côté stockage
    to_wire: Optional[Callable[[Any], Any]] = None
    from_wire: Optional[Callable[[Any], Any]] = None


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _override_to_wire(value: Any) -> Optional[Decimal]:
    if isinstance(value, ManualMargin):
        return value.percent
    if isinstance(value, Mapping) and value.get("type") == "manual":
        return Decimal(str(value["percent"]))
    return None


def _override_from_wire(value: Any) -> Dict[str, Any]:
    if value is None:
        return InheritedMargin().model_dump()
    return ManualMargin(percent=Decimal(str(value))).model_dump()


def _items_to_wire(items: Any) -> List[Dict[str, Any]]:
    return [to_wire(RFQItem, item) for item in items or []]


def _items_from_wire(rows: Any) -> List[Dict[str, Any]]:
    rows = sorted(rows or [], key=lambda row: row.get("position") or 0)
    return [from_wire(RFQItem, row).model_dump(by_alias=True) for row in rows]


USER_FIELDS = (
    FieldMapping("id", "id"),
    FieldMapping("role", "role"),
    FieldMapping("name", "name"),
    FieldMapping("email", "email"),
    FieldMapping("companyName", "company_name"),
    FieldMapping("verified", "verified"),
    FieldMapping("status", "status"),
    FieldMapping("kycStatus", "kyc_status"),
    FieldMapping("publicId", "public_id"),
    FieldMapping("rating", "rating"),
    FieldMapping("dateJoined", "date_joined"),
)

PRODUCT_FIELDS = (
    FieldMapping("id", "id"),
    FieldMapping("supplierId", "supplier_id"),
    FieldMapping("name", "name"),
    FieldMapping("description", "description"),
    FieldMapping("category", "category"),
    FieldMapping("image", "image"),
    FieldMapping("status", "status"),
    FieldMapping("costPrice", "cost_price"),
    FieldMapping("sku", "sku"),
)

RFQ_ITEM_FIELDS = (
    FieldMapping("productId", "product_id"),
    FieldMapping("quantity", "quantity"),
    FieldMapping("notes", "notes", from_wire=lambda value: value or ""),
)

RFQ_FIELDS = (
    FieldMapping("id", "id"),
    FieldMapping("clientId", "client_id"),
    FieldMapping("items", "rfq_items", to_wire=_items_to_wire, from_wire=_items_from_wire),
    FieldMapping("status", "status"),
    FieldMapping("date", "date"),
)

QUOTE_FIELDS = (
    FieldMapping("id", "id"),
    FieldMapping("rfqId", "rfq_id"),
    FieldMapping("supplierId", "supplier_id"),
    FieldMapping("supplierPrice", "supplier_price"),
    FieldMapping("leadTime", "lead_time", from_wire=lambda value: value or ""),
    FieldMapping("marginOverride", "manual_margin_percent", to_wire=_override_to_wire, from_wire=_override_from_wire),
    FieldMapping("marginPercent", "margin_percent"),
    FieldMapping("finalPrice", "final_price"),
    FieldMapping("status", "status"),
)

ORDER_FIELDS = (
    FieldMapping("id", "id"),
    FieldMapping("quoteId", "quote_id"),
    FieldMapping("clientId", "client_id"),
    FieldMapping("supplierId", "supplier_id"),
    FieldMapping("amount", "amount"),
    FieldMapping("status", "status"),
    FieldMapping("date", "date"),
)

MARGIN_SETTING_FIELDS = (
    FieldMapping("category", "category"),
    FieldMapping("marginPercent", "margin_percent"),
    FieldMapping("isDefault", "is_default"),
)

MAPPINGS: Dict[Type[EntityModel], tuple] = {
    User: USER_FIELDS,
    Product: PRODUCT_FIELDS,
    RFQItem: RFQ_ITEM_FIELDS,
    RFQ: RFQ_FIELDS,
    Quote: QUOTE_FIELDS,
    Order: ORDER_FIELDS,
    MarginSetting: MARGIN_SETTING_FIELDS,
}

# Tables du stockage distant / SQL
TABLES: Dict[Type[EntityModel], str] = {
    User: "users",
    Product: "products",
    RFQItem: "rfq_items",
    RFQ: "rfqs",
    Quote: "quotes",
    Order: "orders",
    MarginSetting: "margin_settings",
}


def _check_mappings() -> None:
    """Chaque champ de chaque entité doit avoir exactement une colonne, et inversement."""
    for model, fields in MAPPINGS.items():
        aliases = {info.alias or name for name, info in model.model_fields.items()}
        mapped = [mapping.field for mapping in fields]
        columns = [mapping.column for mapping in fields]
        if set(mapped) != aliases or len(mapped) != len(set(mapped)) or len(columns) != len(set(columns)):
            raise RuntimeError(f"Table de correspondance incomplète pour {model.__name__}: {sorted(aliases ^ set(mapped))}")


_check_mappings()


def to_wire(model: Type[EntityModel], data: Union[EntityModel, Mapping[str, Any]]) -> Dict[str, Any]:
    """Entité (ou modification partielle) -> enregistrement snake_case.

    Une modification partielle peut être indexée par attribut Python (`supplier_price`)
    ou par nom camelCase (`supplierPrice`); seuls les champs présents sont traduits.
    """
    if isinstance(data, EntityModel):
        values = {name: getattr(data, name) for name in type(data).model_fields}
    else:
        values = dict(data)
    aliases: Dict[str, str] = {}
    for name, info in model.model_fields.items():
        aliases[name] = aliases[info.alias or name] = info.alias or name
    camel_values = {aliases.get(key, key): value for key, value in values.items()}
    unknown = set(camel_values) - {mapping.field for mapping in MAPPINGS[model]}
    if unknown:
        raise KeyError(f"Champs inconnus pour {model.__name__}: {sorted(unknown)}")
    record: Dict[str, Any] = {}
    for mapping in MAPPINGS[model]:
        if mapping.field not in camel_values:
            continue
        value = camel_values[mapping.field]
        record[mapping.column] = mapping.to_wire(value) if mapping.to_wire else _plain(value)
    return record


def from_wire(model: Type[EntityModel], record: Mapping[str, Any]) -> EntityModel:
    """Enregistrement snake_case -> entité. Les colonnes non mappées sont ignorées."""
    values: Dict[str, Any] = {}
    for mapping in MAPPINGS[model]:
        if mapping.column not in record:
            continue
        value = record[mapping.column]
        values[mapping.field] = mapping.from_wire(value) if mapping.from_wire else value
    return model.model_validate(values)
