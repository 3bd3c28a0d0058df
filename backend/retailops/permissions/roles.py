# Overview: Default role -> permission assignments.

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [
        "VIEW_ORDERS", "CREATE_ORDER", "UPDATE_ORDER_STATUS", "EDIT_ORDER", "BULK_UPDATE_ORDERS",
        "VIEW_INVENTORY", "RECORD_INVENTORY", "APPROVE_INVENTORY",
        "DELIVER_ORDERS", "RUN_OUTBOX",
    ],
    "manager": [
        "VIEW_ORDERS", "CREATE_ORDER", "UPDATE_ORDER_STATUS", "EDIT_ORDER", "BULK_UPDATE_ORDERS",
        "VIEW_INVENTORY", "RECORD_INVENTORY", "APPROVE_INVENTORY",
    ],
    "operator": [
        "VIEW_ORDERS", "CREATE_ORDER", "UPDATE_ORDER_STATUS", "EDIT_ORDER", "BULK_UPDATE_ORDERS",
        "VIEW_INVENTORY", "RECORD_INVENTORY",
    ],
    "rider": [
        "VIEW_ORDERS", "UPDATE_ORDER_STATUS", "DELIVER_ORDERS",
    ],
    "viewer": [
        "VIEW_ORDERS", "VIEW_INVENTORY",
    ],
}
