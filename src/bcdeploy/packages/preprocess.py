"""In-place manifest mutations applied to staged app files before publishing."""

import uuid
from typing import Optional
from xml.etree import ElementTree as ET

import structlog

from bcdeploy.core.exceptions import VisibilityMismatch
from bcdeploy.core.models import (
    Package,
    PublishOptions,
    VisibilityMode,
    normalize_app_id,
)
from bcdeploy.packages.appfile import ManifestDocument, rewrite_package

logger = structlog.get_logger()


def _replace_dependencies(document: ManifestDocument, options: PublishOptions, app: str) -> None:
    for dependency in document.dependencies():
        dependency_id = dependency.get("Id") or dependency.get("AppId")
        if not dependency_id:
            continue
        replacement = options.replace_dependencies.get(normalize_app_id(dependency_id))
        if replacement is None:
            continue
        logger.info(
            "Replacing dependency",
            app=app,
            dependency=dependency_id,
            replacement=replacement.id,
        )
        id_attr = "Id" if dependency.get("Id") is not None else "AppId"
        dependency.set(id_attr, replacement.id)
        dependency.set("Name", replacement.name)
        dependency.set("Publisher", replacement.publisher)
        legacy = dependency.get("MinVersion") is None and dependency.get("Version") is not None
        dependency.set("Version" if legacy else "MinVersion", replacement.min_version)


def _add_internals_visible_to(document: ManifestDocument, options: PublishOptions, app: str) -> None:
    container = document.internals_visible_to(create=True)
    existing = {
        normalize_app_id(module.get("Id", ""))
        for module in container.iter(document.tag("Module"))
    }
    for reference in options.internals_visible_to:
        if normalize_app_id(reference.id) in existing:
            continue
        logger.info("Adding internals visible to", app=app, module=reference.id)
        ET.SubElement(
            container,
            document.tag("Module"),
            {"Id": reference.id, "Name": reference.name, "Publisher": reference.publisher},
        )
        existing.add(normalize_app_id(reference.id))


def check_visibility(package: Package, options: PublishOptions) -> None:
    """Fail when assert mode requires a code visibility the package does not have.

    Raises:
        VisibilityMismatch: If the package flag differs from the required one
    """
    if options.show_my_code is None or options.show_my_code_mode != VisibilityMode.ASSERT:
        return
    actual = package.manifest.show_my_code
    if actual != options.show_my_code:
        raise VisibilityMismatch(str(package.identity), expected=options.show_my_code, actual=actual)


def preprocess_package(package: Package, options: PublishOptions) -> Package:
    """Apply the requested manifest mutations to a staged package.

    Only ever called with copies in the working area. Returns the package as
    read back from the rewritten file.

    Raises:
        VisibilityMismatch: In assert mode, if the code visibility differs
    """
    if not options.needs_preprocessing:
        return package

    app = str(package.identity)
    check_visibility(package, options)

    set_visibility = options.show_my_code is not None and options.show_my_code_mode == VisibilityMode.SET
    mutations_needed = bool(options.replace_dependencies or options.internals_visible_to or set_visibility)
    new_package_id: Optional[uuid.UUID] = uuid.uuid4() if options.replace_package_id else None

    if not mutations_needed and new_package_id is None:
        return package

    def mutate(document: ManifestDocument) -> None:
        if options.replace_dependencies:
            _replace_dependencies(document, options, app)
        if options.internals_visible_to:
            _add_internals_visible_to(document, options, app)
        if set_visibility:
            logger.info("Setting ShowMyCode", app=app, value=options.show_my_code)
            document.set_show_my_code(options.show_my_code)

    if new_package_id is not None:
        logger.info("Replacing package id", app=app, package_id=str(new_package_id))

    return rewrite_package(package.path, mutate, package_id=new_package_id)
