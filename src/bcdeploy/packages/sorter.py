"""Dependency ordering of a batch of app files."""

import heapq
from pathlib import Path
from typing import Dict, List, Sequence, Set, Tuple

import structlog

from bcdeploy.core.exceptions import CyclicDependency
from bcdeploy.core.models import AppDependency, Package, normalize_app_id, version_tuple
from bcdeploy.packages.appfile import read_package

logger = structlog.get_logger()


def _name_key(publisher: str, name: str) -> Tuple[str, str]:
    return publisher.strip().lower(), name.strip().lower()


def _providers(packages: Sequence[Package]) -> Tuple[Dict[str, List[int]], Dict[Tuple[str, str], List[int]]]:
    by_id: Dict[str, List[int]] = {}
    by_name: Dict[Tuple[str, str], List[int]] = {}
    for index, package in enumerate(packages):
        identity = package.identity
        if identity.id:
            by_id.setdefault(normalize_app_id(identity.id), []).append(index)
        by_name.setdefault(_name_key(identity.publisher, identity.name), []).append(index)
    return by_id, by_name


def _resolve(
    dependency: AppDependency,
    by_id: Dict[str, List[int]],
    by_name: Dict[Tuple[str, str], List[int]],
) -> List[int]:
    if dependency.id:
        return by_id.get(normalize_app_id(dependency.id), [])
    return by_name.get(_name_key(dependency.publisher, dependency.name), [])


def sort_packages(packages: Sequence[Package]) -> List[Package]:
    """Order packages so that every package follows its in-batch dependencies.

    Unrelated packages keep their input order. Dependencies that are not part
    of the batch are assumed to be present on the server already.

    Raises:
        CyclicDependency: If the declared dependencies contain a cycle
    """
    by_id, by_name = _providers(packages)

    dependents: Dict[int, Set[int]] = {index: set() for index in range(len(packages))}
    in_degree = [0] * len(packages)

    for index, package in enumerate(packages):
        for dependency in package.manifest.dependencies:
            for provider in _resolve(dependency, by_id, by_name):
                if provider == index:
                    logger.error("App depends on itself", app=str(package.identity))
                    raise CyclicDependency([str(package.identity)])
                if index in dependents[provider]:
                    continue
                provided = packages[provider].identity.version
                if version_tuple(provided) < version_tuple(dependency.min_version):
                    logger.warning(
                        "Dependency in batch is older than required",
                        app=str(package.identity),
                        dependency=str(packages[provider].identity),
                        min_version=dependency.min_version,
                    )
                dependents[provider].add(index)
                in_degree[index] += 1

    # Kahn's algorithm, always taking the earliest ready package in input order
    ready = [index for index, degree in enumerate(in_degree) if degree == 0]
    heapq.heapify(ready)
    ordered: List[int] = []
    while ready:
        index = heapq.heappop(ready)
        ordered.append(index)
        for dependent in dependents[index]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(ordered) != len(packages):
        remaining = [str(packages[index].identity) for index, degree in enumerate(in_degree) if degree > 0]
        logger.error("Cyclic dependency detected", apps=remaining)
        raise CyclicDependency(remaining)

    return [packages[index] for index in ordered]


def sort_app_files(paths: Sequence[Path]) -> List[Package]:
    """Read every app file of a batch and return them in publish order.

    All files are read before ordering; one unreadable file fails the batch.

    Raises:
        InvalidPackage: If any file cannot be read
        CyclicDependency: If the declared dependencies contain a cycle
    """
    packages = [read_package(Path(path)) for path in paths]
    ordered = sort_packages(packages)
    logger.info("Sorted apps by dependencies", order=[str(p.identity) for p in ordered])
    return ordered
