"""
Section Dependency Graph

Static map of which sections depend on which, loaded once at process start,
and the manager that turns an out-of-order edit into stale dependents.
"""

import json
import logging
from collections import deque
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Literal, Mapping, Optional, Tuple, Union

from proposal_engine.errors import DependencyConfigInvalid, InvalidStaleDecision
from proposal_engine.state import (
    FINAL_STATUSES,
    ProcessingStatus,
    SectionRef,
    WorkflowMessage,
    WorkflowState,
    apply_update,
    utcnow,
)

logger = logging.getLogger(__name__)

StaleDecision = Literal["keep", "regenerate"]


class DependencyMap:
    """
    Read-only section -> upstream sections mapping.

    Safe for unsynchronized concurrent reads once constructed.
    """

    def __init__(self, mapping: Mapping[str, List[str]]):
        self._validate(mapping)
        self._dependencies: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {section: tuple(deps) for section, deps in mapping.items()}
        )
        reverse: Dict[str, List[str]] = {section: [] for section in mapping}
        for section, deps in mapping.items():
            for dep in deps:
                if section not in reverse[dep]:
                    reverse[dep].append(section)
        self._dependents: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {section: tuple(children) for section, children in reverse.items()}
        )

    @staticmethod
    def _validate(mapping) -> None:
        if not isinstance(mapping, Mapping):
            raise DependencyConfigInvalid("Dependency configuration must be an object of section ids")
        for section, deps in mapping.items():
            if not isinstance(section, str) or not section:
                raise DependencyConfigInvalid(f"Invalid section id: {section!r}")
            if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
                raise DependencyConfigInvalid(f"Dependencies of '{section}' must be a list of section ids")
            if section in deps:
                raise DependencyConfigInvalid(f"Section '{section}' depends on itself")
            unknown = [d for d in deps if d not in mapping]
            if unknown:
                raise DependencyConfigInvalid(f"Section '{section}' depends on unknown sections: {unknown}")

    @property
    def sections(self) -> List[str]:
        return list(self._dependencies)

    def __contains__(self, section_id: str) -> bool:
        return section_id in self._dependencies

    def dependencies_of(self, section_id: str) -> List[str]:
        return list(self._dependencies.get(section_id, ()))

    def get_dependents(self, section_id: str) -> List[str]:
        """Sections that directly depend on section_id."""
        return list(self._dependents.get(section_id, ()))

    def get_all_dependents(self, section_id: str) -> List[str]:
        """
        Transitive dependents of section_id, breadth first.

        Each section appears once and the origin is never included, even
        when the graph contains a cycle back to it.
        """
        seen = {section_id}
        ordered: List[str] = []
        queue = deque(self.get_dependents(section_id))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            ordered.append(current)
            queue.extend(self.get_dependents(current))
        return ordered

    def is_dependency_of(self, upstream: str, downstream: str) -> bool:
        return downstream in self.get_all_dependents(upstream)

    def sections_in_dependency_order(self, subset: Optional[List[str]] = None) -> List[str]:
        """
        Topological order (dependencies first), stable with respect to the
        configured order. Cycles are broken at the first revisited node.
        """
        candidates = subset if subset is not None else self.sections
        ordered: List[str] = []
        visited = set()

        def visit(section_id: str) -> None:
            if section_id in visited:
                return
            visited.add(section_id)
            for dep in self.dependencies_of(section_id):
                visit(dep)
            ordered.append(section_id)

        for section_id in candidates:
            visit(section_id)

        wanted = set(candidates)
        return [section_id for section_id in ordered if section_id in wanted]


def load_dependency_map(path: Union[str, Path]) -> DependencyMap:
    """
    Load and validate the dependency configuration.

    Raises:
        DependencyConfigInvalid: missing file, bad JSON or bad structure
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise DependencyConfigInvalid(f"Dependency configuration not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise DependencyConfigInvalid(f"Could not read dependency configuration {path}: {e}") from e

    dependency_map = DependencyMap(raw)
    logger.info("Loaded dependency map with %d sections from %s", len(dependency_map.sections), path)
    return dependency_map


class DependencyManager:
    """Applies edit invalidation and stale decisions to WorkflowState."""

    def __init__(self, dependency_map: DependencyMap):
        self.dependency_map = dependency_map

    def on_section_edited(self, state: WorkflowState, section_id: str) -> WorkflowState:
        """
        Mark finalized transitive dependents of section_id as stale.

        Only approved or edited dependents change; their current status is
        kept in previous_status. Applying the same edit twice is a no-op the
        second time.
        """
        state.section(section_id)
        changed = {}
        for dependent in self.dependency_map.get_all_dependents(section_id):
            section = state.sections.get(dependent)
            if section is None or section.status not in FINAL_STATUSES:
                continue
            changed[dependent] = section.model_copy(
                update={
                    "status": ProcessingStatus.STALE,
                    "previous_status": section.status,
                    "last_updated": utcnow(),
                }
            )

        if not changed:
            return state

        logger.info("Edit of '%s' marked stale: %s", section_id, ", ".join(changed))
        return apply_update(state, {
            "sections": changed,
            "messages": [WorkflowMessage(
                content=f"Sections marked stale after editing {section_id}: {', '.join(changed)}",
                metadata={"kind": "stale", "source": section_id, "sections": list(changed)},
            )],
        })

    def on_stale_decision(
        self,
        state: WorkflowState,
        section_id: str,
        decision: StaleDecision,
        guidance: Optional[str] = None,
    ) -> WorkflowState:
        """
        Resolve a stale section.

        keep restores the status it had before going stale; regenerate
        queues it again and records the guidance for the next generation.

        Raises:
            InvalidStaleDecision: the section is not stale or the decision is unknown
        """
        section = state.section(section_id)
        if section.status != ProcessingStatus.STALE:
            raise InvalidStaleDecision(
                f"Section '{section_id}' is {section.status.value}, not stale",
                thread_id=state.thread_id,
            )

        ref = SectionRef(section_id=section_id)
        if decision == "keep":
            restored = section.previous_status or ProcessingStatus.APPROVED
            update = state.ref_update(ref, status=restored)
            update["messages"] = [WorkflowMessage(
                role="user",
                content=guidance or f"Kept {section_id} unchanged",
                metadata={"kind": "stale_decision", "decision": "keep", "ref": ref.key},
            )]
        elif decision == "regenerate":
            update = state.ref_update(ref, status=ProcessingStatus.QUEUED)
            update["messages"] = [WorkflowMessage(
                role="user",
                content=guidance or f"Regenerate {section_id} against its updated dependencies",
                metadata={"kind": "guidance", "decision": "regenerate", "ref": ref.key},
            )]
        else:
            raise InvalidStaleDecision(f"Unknown stale decision: {decision!r}", thread_id=state.thread_id)

        return apply_update(state, update)

    def apply_edit(self, state: WorkflowState, section_id: str, content: str) -> WorkflowState:
        """Store user-authored content for a section and invalidate its dependents."""
        ref = SectionRef(section_id=section_id)
        state.section(section_id)
        update = state.ref_update(ref, status=ProcessingStatus.EDITED, content=content)
        update["messages"] = [WorkflowMessage(
            role="user",
            content=f"Edited {section_id}",
            metadata={"kind": "edit", "ref": ref.key},
        )]
        return self.on_section_edited(apply_update(state, update), section_id)
