# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- ORDERS --

ORDER_PERMISSIONS = [
    (
        "VIEW_ORDERS",
        "View Orders",
        "View orders, their timeline and workflow state",
        PermissionCategory.ORDERS,
    ),
    (
        "CREATE_ORDER",
        "Create Order",
        "Create orders in intake",
        PermissionCategory.ORDERS,
    ),
    (
        "UPDATE_ORDER_STATUS",
        "Update Order Status",
        "Request order status transitions (workflow rules still apply)",
        PermissionCategory.ORDERS,
    ),
    (
        "EDIT_ORDER",
        "Edit Order",
        "Correct fulfillment type before packing",
        PermissionCategory.ORDERS,
    ),
    (
        "BULK_UPDATE_ORDERS",
        "Bulk Update Orders",
        "Apply one transition to many orders",
        PermissionCategory.ORDERS,
    ),
]


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (
        "VIEW_INVENTORY",
        "View Inventory",
        "View stock levels and ledger transactions",
        PermissionCategory.INVENTORY,
    ),
    (
        "RECORD_INVENTORY",
        "Record Inventory",
        "Create purchases, purchase returns, damage and adjustments",
        PermissionCategory.INVENTORY,
    ),
    (
        "APPROVE_INVENTORY",
        "Approve Inventory",
        "Approve, reject or void ledger transactions",
        PermissionCategory.INVENTORY,
    ),
]


# -- DISPATCH --

DISPATCH_PERMISSIONS = [
    (
        "DELIVER_ORDERS",
        "Deliver Orders",
        "Report delivery outcomes for orders assigned to you",
        PermissionCategory.DISPATCH,
    ),
    (
        "RUN_OUTBOX",
        "Run Outbox",
        "Dispatch queued notifications and courier syncs",
        PermissionCategory.DISPATCH,
    ),
]


PERMISSION_DEFINITIONS = (
    ORDER_PERMISSIONS
    + INVENTORY_PERMISSIONS
    + DISPATCH_PERMISSIONS
)
