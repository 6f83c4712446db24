import enum


class Role(str, enum.Enum):
    admin = "ADMIN"
    manager = "MANAGER"
    staff = "STAFF"


class Permission(str, enum.Enum):
    manage_materials = "MANAGE_MATERIALS"
    create_receipt = "CREATE_RECEIPT"
    transfer_materials = "TRANSFER_MATERIALS"
    delete_transaction = "DELETE_TRANSACTION"


# member names equal values: SQLAlchemy's Enum persists the names
class MovementKind(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"
