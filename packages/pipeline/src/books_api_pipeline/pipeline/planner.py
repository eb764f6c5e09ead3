"""
Structural checks for a pipeline declaration.

Every stage, action, namespace and artifact reference is checked before any
action runs. An action occupies position `(stage_index, run_order)`; a
reference is valid only when its producer sits at a strictly smaller
position. Same-group references are rejected because same-group actions run
concurrently, and forward references cover both "later" and cyclic wiring.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from books_api_pipeline.core import (
    ConfigurationError,
    DuplicateNameError,
    ForwardReferenceError,
    UnknownReferenceError,
)

from .action import Action

Position = tuple[int, int]


@dataclass(frozen=True, slots=True)
class StageSpec:
    name: str
    actions: tuple[Action, ...]

    @classmethod
    def of(cls, name: str, *actions: Action) -> "StageSpec":
        return cls(name=name, actions=tuple(actions))


@dataclass(frozen=True, slots=True)
class ActionGroup:
    run_order: int
    actions: tuple[Action, ...]


@dataclass(frozen=True, slots=True)
class PlannedStage:
    name: str
    groups: tuple[ActionGroup, ...]

    @property
    def actions(self) -> tuple[Action, ...]:
        return tuple(a for g in self.groups for a in g.actions)


def group_by_run_order(actions: Sequence[Action]) -> tuple[ActionGroup, ...]:
    """Group actions by run_order, ascending; declaration order kept inside a group."""
    by_order: dict[int, list[Action]] = {}
    for a in actions:
        by_order.setdefault(a.run_order, []).append(a)
    return tuple(
        ActionGroup(run_order=ro, actions=tuple(by_order[ro]))
        for ro in sorted(by_order)
    )


def _check_names(stages: Sequence[StageSpec]) -> None:
    seen_stages: set[str] = set()
    for st in stages:
        if not isinstance(st.name, str) or not st.name.strip():
            raise ConfigurationError("stage name must be a non-empty string")
        if st.name in seen_stages:
            raise DuplicateNameError(f"Duplicate stage name: {st.name}")
        seen_stages.add(st.name)

        if not st.actions:
            raise ConfigurationError(f"Stage {st.name} has no actions")

        seen_actions: set[str] = set()
        for a in st.actions:
            if not a.name.strip():
                raise ConfigurationError(f"Stage {st.name}: action name must be non-empty")
            if a.name in seen_actions:
                raise DuplicateNameError(f"Duplicate action {a.name} in stage {st.name}")
            seen_actions.add(a.name)
            if a.run_order < 1:
                raise ConfigurationError(
                    f"{st.name}/{a.name}: run_order must be >= 1, got {a.run_order}"
                )


def _producers(
    stages: Sequence[StageSpec],
) -> tuple[dict[str, tuple[Position, Action]], dict[str, tuple[Position, Action]]]:
    namespaces: dict[str, tuple[Position, Action]] = {}
    artifacts: dict[str, tuple[Position, Action]] = {}
    for idx, st in enumerate(stages):
        for a in st.actions:
            pos = (idx, a.run_order)
            if a.namespace is not None:
                if a.namespace in namespaces:
                    raise DuplicateNameError(f"Duplicate variables namespace: {a.namespace}")
                namespaces[a.namespace] = (pos, a)
            for art in a.output_artifacts:
                if art in artifacts:
                    raise DuplicateNameError(f"Artifact {art} produced by more than one action")
                artifacts[art] = (pos, a)
    return namespaces, artifacts


def plan_pipeline(stages: Sequence[StageSpec]) -> list[PlannedStage]:
    """
    Validate the declaration and return stages with their run_order groups.

    Raises:
        DuplicateNameError: duplicate stage / action / namespace / artifact names.
        UnknownReferenceError: a reference names a namespace, key or artifact
            that no action produces.
        ForwardReferenceError: a reference names a producer that does not
            complete before the consumer starts.
        ConfigurationError: empty names, empty stages, invalid run_order.
    """
    stages = list(stages)
    if not stages:
        raise ConfigurationError("pipeline has no stages")

    _check_names(stages)
    namespaces, artifacts = _producers(stages)

    for idx, st in enumerate(stages):
        for a in st.actions:
            consumer = (idx, a.run_order)
            where = f"{st.name}/{a.name}"

            for ref in a.references():
                hit = namespaces.get(ref.namespace)
                if hit is None:
                    raise UnknownReferenceError(
                        f"{where} references unknown namespace {ref.namespace} ({ref})"
                    )
                producer_pos, producer = hit
                if producer_pos >= consumer:
                    raise ForwardReferenceError(
                        f"{where} references {ref} produced by {producer.name}, "
                        "which does not complete before it starts"
                    )
                if producer.variables and ref.key not in producer.variables:
                    raise UnknownReferenceError(
                        f"{where} references {ref}; {producer.name} publishes "
                        f"{sorted(producer.variables)}"
                    )

            if a.input_artifact is not None:
                hit = artifacts.get(a.input_artifact)
                if hit is None:
                    raise UnknownReferenceError(
                        f"{where} consumes unknown artifact {a.input_artifact}"
                    )
                if hit[0] >= consumer:
                    raise ForwardReferenceError(
                        f"{where} consumes artifact {a.input_artifact} before it is produced"
                    )

    return [
        PlannedStage(name=st.name, groups=group_by_run_order(st.actions))
        for st in stages
    ]
