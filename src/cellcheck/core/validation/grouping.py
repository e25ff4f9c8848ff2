from __future__ import annotations

import json

from .schemas import GroupedValidation, ValidationMessage

ESTIMATE_MARKERS = ("estimat", "typical", "based on peer", "based on similar")


def is_estimate(reason: str) -> bool:
    text = reason.casefold()
    return any(marker in text for marker in ESTIMATE_MARKERS)


def group_key(message: ValidationMessage) -> str:
    return json.dumps(
        [message.original_value, message.suggested_value, message.status, message.message, message.is_estimate],
        ensure_ascii=False,
        default=str,
    )


def group_validations(messages: list[ValidationMessage]) -> list[GroupedValidation]:
    """Partition messages into groups of identical suggested changes.

    Groups keep the order in which their first member appears.
    """
    groups: dict[str, GroupedValidation] = {}
    for message in messages:
        key = group_key(message)
        group = groups.get(key)
        if group is None:
            group = GroupedValidation(
                key=key,
                original_value=message.original_value,
                suggested_value=message.suggested_value,
                status=message.status,
                message=message.message,
                is_estimate=message.is_estimate,
            )
            groups[key] = group
        group.items.append(message)
    return list(groups.values())
