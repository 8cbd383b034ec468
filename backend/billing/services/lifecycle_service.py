# Overview: Explicit finite-state machines for quotes, invoices and subscriptions.

"""
Billing Document Lifecycle Tables

================================================================================
PURPOSE: One table per entity: (state, event) -> next state
================================================================================

Transition legality is decided here and nowhere else. Services look up the
next state for an event; guards and side effects stay in the services.

QUOTE:
    draft    --send-->    sent
    sent     --accept-->  accepted   --convert--> converted
    sent     --reject-->  rejected
    sent     --expire-->  expired    --reject-->  rejected
    sent|rejected|expired --revise--> (same state; a new draft is created)
    expired  --accept-->  accepted   (only when ALLOW_ACCEPT_EXPIRED_QUOTES)

INVOICE:
    draft    --finalize-->     pending
    pending  --mark_overdue--> overdue
    draft|pending|overdue --pay-->    paid
    draft|pending|overdue --cancel--> canceled

SUBSCRIPTION:
    trial|active|past_due|paused --activate--> active
    trial|active|past_due        --pause-->    paused
    paused                       --resume-->   active
    trial|active                 --mark_past_due--> past_due
    any non-canceled             --cancel-->   canceled

Tables are validated once at application startup (validate_state_machines).
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import InvalidTransitionError


class StateMachineDefinitionError(RuntimeError):
    """A transition table is incomplete or inconsistent (startup failure)."""


@dataclass(frozen=True)
class StateMachine:
    entity_type: str
    states: frozenset[str]
    initial_states: frozenset[str]
    terminal_states: frozenset[str]
    transitions: dict[tuple[str, str], str] = field(default_factory=dict)

    @property
    def events(self) -> set[str]:
        return {event for (_, event) in self.transitions}

    def can_fire(self, current: str, event: str) -> bool:
        return (current, event) in self.transitions

    def next_state(self, current: str, event: str) -> str:
        """
        Resolve the target state for an event.

        Raises:
            InvalidTransitionError: naming the current state when the event is
                not legal from it
        """
        try:
            return self.transitions[(current, event)]
        except KeyError:
            raise InvalidTransitionError(
                f"Cannot {event.replace('_', ' ')} {self.entity_type} in status '{current}'",
                entity_type=self.entity_type,
                current_status=current,
            ) from None

    def validate(self) -> None:
        """
        Check the table for completeness.

        - every referenced state is declared
        - terminal states have no outgoing transitions
        - every non-terminal state has at least one outgoing transition
        - every state is reachable from an initial state
        """
        problems = []
        for (source, event), target in self.transitions.items():
            if source not in self.states:
                problems.append(f"unknown source state '{source}' for event '{event}'")
            if target not in self.states:
                problems.append(f"unknown target state '{target}' for event '{event}'")
            if source in self.terminal_states:
                problems.append(f"terminal state '{source}' has outgoing event '{event}'")

        for state in self.initial_states - self.states:
            problems.append(f"unknown initial state '{state}'")

        sources = {source for (source, _) in self.transitions}
        for state in self.states - self.terminal_states - sources:
            problems.append(f"non-terminal state '{state}' has no outgoing transitions")

        reachable = set(self.initial_states)
        frontier = list(self.initial_states)
        while frontier:
            state = frontier.pop()
            for (source, _), target in self.transitions.items():
                if source == state and target not in reachable:
                    reachable.add(target)
                    frontier.append(target)
        for state in self.states - reachable:
            problems.append(f"state '{state}' is unreachable")

        if problems:
            raise StateMachineDefinitionError(
                f"{self.entity_type} state machine is invalid: " + "; ".join(sorted(problems))
            )


QUOTE_STATES = frozenset({"draft", "sent", "accepted", "rejected", "expired", "converted"})
INVOICE_STATES = frozenset({"draft", "pending", "paid", "canceled", "overdue"})
SUBSCRIPTION_STATES = frozenset({"trial", "active", "past_due", "paused", "canceled"})


def build_quote_machine(allow_accept_expired: bool = False) -> StateMachine:
    transitions = {
        ("draft", "send"): "sent",
        ("sent", "accept"): "accepted",
        ("sent", "reject"): "rejected",
        ("sent", "expire"): "expired",
        ("expired", "reject"): "rejected",
        ("accepted", "convert"): "converted",
        ("sent", "revise"): "sent",
        ("rejected", "revise"): "rejected",
        ("expired", "revise"): "expired",
    }
    if allow_accept_expired:
        transitions[("expired", "accept")] = "accepted"
    return StateMachine(
        entity_type="quote",
        states=QUOTE_STATES,
        initial_states=frozenset({"draft"}),
        terminal_states=frozenset({"converted"}),
        transitions=transitions,
    )


INVOICE_MACHINE = StateMachine(
    entity_type="invoice",
    states=INVOICE_STATES,
    initial_states=frozenset({"draft", "pending"}),
    terminal_states=frozenset({"paid", "canceled"}),
    transitions={
        ("draft", "finalize"): "pending",
        ("pending", "mark_overdue"): "overdue",
        ("draft", "pay"): "paid",
        ("pending", "pay"): "paid",
        ("overdue", "pay"): "paid",
        ("draft", "cancel"): "canceled",
        ("pending", "cancel"): "canceled",
        ("overdue", "cancel"): "canceled",
    },
)

SUBSCRIPTION_MACHINE = StateMachine(
    entity_type="subscription",
    states=SUBSCRIPTION_STATES,
    initial_states=frozenset({"trial", "active"}),
    terminal_states=frozenset({"canceled"}),
    transitions={
        ("trial", "activate"): "active",
        ("active", "activate"): "active",
        ("past_due", "activate"): "active",
        ("paused", "activate"): "active",
        ("trial", "pause"): "paused",
        ("active", "pause"): "paused",
        ("past_due", "pause"): "paused",
        ("paused", "resume"): "active",
        ("trial", "mark_past_due"): "past_due",
        ("active", "mark_past_due"): "past_due",
        ("trial", "cancel"): "canceled",
        ("active", "cancel"): "canceled",
        ("past_due", "cancel"): "canceled",
        ("paused", "cancel"): "canceled",
    },
)


def quote_machine() -> StateMachine:
    """Quote table for the running app (honours ALLOW_ACCEPT_EXPIRED_QUOTES)."""
    from flask import current_app

    return build_quote_machine(current_app.config.get("ALLOW_ACCEPT_EXPIRED_QUOTES", False))


def validate_state_machines(allow_accept_expired: bool = False) -> None:
    """Validate every table; raises StateMachineDefinitionError on the first bad one."""
    for machine in (build_quote_machine(allow_accept_expired), INVOICE_MACHINE, SUBSCRIPTION_MACHINE):
        machine.validate()
