"""Resource types and the convergence state machine."""

from converge.resources.archive import ArchiveResource
from converge.resources.base import ConvergeOutcome, PlannedChange, Resource, noop_message
from converge.resources.exec import ExecResource
from converge.resources.file import FileResource
from converge.resources.package import PackageResource
from converge.resources.scaffold import ScaffoldResource
from converge.resources.service import ServiceResource

RESOURCE_TYPES: dict[str, type[Resource]] = {
    cls.type_name: cls
    for cls in (
        PackageResource,
        ServiceResource,
        FileResource,
        ExecResource,
        ArchiveResource,
        ScaffoldResource,
    )
}

__all__ = [
    "RESOURCE_TYPES",
    "ArchiveResource",
    "ConvergeOutcome",
    "ExecResource",
    "FileResource",
    "PackageResource",
    "PlannedChange",
    "Resource",
    "ScaffoldResource",
    "ServiceResource",
    "noop_message",
]
