from .expenses import (
    create_expense,
    create_split,
    get_expense,
    get_unpaid_split,
    list_group_expenses,
    list_unpaid_splits,
    mark_split_paid,
    record_payment,
)
from .reminders import get_reminder_setting, mark_reminder_sent, toggle_reminders
from .reports import get_user_summary, list_groups_with_unpaid_splits, list_receivables, unpaid_totals_by_debtor
from .users import (
    ensure_user,
    get_active_account_details,
    get_display_names,
    get_user_by_telegram_id,
    is_group_member,
    list_group_members,
    register_member,
    set_account_details,
)

__all__ = [
    "create_expense",
    "create_split",
    "get_expense",
    "get_unpaid_split",
    "list_group_expenses",
    "list_unpaid_splits",
    "mark_split_paid",
    "record_payment",
    "get_reminder_setting",
    "mark_reminder_sent",
    "toggle_reminders",
    "get_user_summary",
    "list_groups_with_unpaid_splits",
    "list_receivables",
    "unpaid_totals_by_debtor",
    "ensure_user",
    "get_active_account_details",
    "get_display_names",
    "get_user_by_telegram_id",
    "is_group_member",
    "list_group_members",
    "register_member",
    "set_account_details",
]
