from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, Iterator, List, Optional, TypedDict


@dataclass
class ArtifactContext:
    """Key/value data shared by every job of one run.

    Later writers overwrite earlier keys. Only the job that just finished merges into it,
    so reads and writes never interleave.
    """

    values: Dict[str, Any] = field(default_factory=dict)
    producers: Dict[str, str] = field(default_factory=dict)

    def merge(self, artifacts: Optional[Dict[str, Any]], producer: str = "") -> None:
        if not artifacts:
            return
        self.values.update(artifacts)
        for key in artifacts:
            self.producers[key] = producer

    def snapshot(self) -> Dict[str, Any]:
        return dict(self.values)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


class FlowState(TypedDict, total=False):
    status: str
    halted: bool
    error: str
    log: Annotated[List[str], operator.add]
