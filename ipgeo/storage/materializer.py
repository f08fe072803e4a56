"""Resource materializer — copies packaged geo-databases to local files on first use."""

import os
import shutil
from enum import Enum
from importlib import resources
from importlib.resources.abc import Traversable
from typing import Optional

import structlog

from ipgeo.core.config import DEFAULT_RESOURCE_PACKAGE
from ipgeo.core.errors import DatabaseIOError

log = structlog.get_logger(component="materializer")

# Buffer size used when streaming a resource into its destination file
BUFFER_SIZE = 64 * 1024


class MaterializeResult(str, Enum):
    MATERIALIZED = "materialized"
    SKIPPED = "skipped"


def resource_root(package: str = DEFAULT_RESOURCE_PACKAGE) -> Traversable:
    """Return the directory that embedded resource names are resolved against."""
    return resources.files(package)


def materialize(
    resource_name: str,
    destination: str,
    root: Optional[Traversable] = None,
    package: str = DEFAULT_RESOURCE_PACKAGE,
) -> MaterializeResult:
    """Copy an embedded resource to ``destination`` unless that file already exists.

    An existing destination is never touched. The destination is created
    exclusively, so when two writers race the first one wins and the other
    reports ``SKIPPED``.

    Args:
        resource_name: Name of the resource, relative to ``root``.
        destination: Local file path to create.
        root: Directory holding the resources. Defaults to
            :func:`resource_root` of ``package``.
        package: Package whose files hold the embedded databases.

    Returns:
        ``MATERIALIZED`` if this call wrote the file, ``SKIPPED`` otherwise.

    Raises:
        DatabaseIOError: if the parent directory cannot be created, the
            resource cannot be opened, or the copy fails.
    """
    if os.path.isfile(destination):
        return MaterializeResult.SKIPPED

    parent = os.path.dirname(os.path.abspath(destination))
    try:
        os.makedirs(parent, exist_ok=True)
    except OSError as exc:
        raise DatabaseIOError(f"Cannot create directory {parent}: {exc}") from exc

    try:
        if root is None:
            root = resource_root(package)
        source = root.joinpath(resource_name).open("rb")
    except (ImportError, OSError, ValueError) as exc:
        raise DatabaseIOError(f"Cannot open embedded resource {resource_name}: {exc}") from exc

    with source:
        try:
            target = open(destination, "xb")
        except FileExistsError:
            return MaterializeResult.SKIPPED
        except OSError as exc:
            raise DatabaseIOError(f"Cannot create {destination}: {exc}") from exc

        log.info("copying_resource", resource=resource_name)
        try:
            with target:
                shutil.copyfileobj(source, target, BUFFER_SIZE)
        except OSError as exc:
            _remove_partial(destination)
            raise DatabaseIOError(f"Cannot copy {resource_name} to {destination}: {exc}") from exc

    log.info("resource_materialized", resource=resource_name, path=os.path.abspath(destination))
    return MaterializeResult.MATERIALIZED


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except OSError as exc:
        log.warning("partial_copy_not_removed", path=path, error=str(exc))
