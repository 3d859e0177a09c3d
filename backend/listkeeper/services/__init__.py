"""Services package."""

from listkeeper.services.list_service import AccessibleList, ListDeletion, ListService
from listkeeper.services.recurrence import RecurrenceRule, describe_rule, parse_rule
from listkeeper.services.scheduler import next_due_date
from listkeeper.services.task_lifecycle import TaskLifecycleService, ToggleResult
from listkeeper.services.user_service import UserService, hash_password, verify_password

__all__ = [
    "AccessibleList",
    "ListDeletion",
    "ListService",
    "RecurrenceRule",
    "describe_rule",
    "parse_rule",
    "next_due_date",
    "TaskLifecycleService",
    "ToggleResult",
    "UserService",
    "hash_password",
    "verify_password",
]
