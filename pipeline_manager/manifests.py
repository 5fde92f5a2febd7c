"""Kubernetes manifest set loading and validation.

The pipeline applies a directory of static manifests verbatim. This module
checks that the directory describes a coherent application before it is
applied: every object is well formed, each component has a Deployment and a
Service, Service and Deployment selectors line up, and every Ingress routes
to a Service that exists in the set.
"""

import copy
from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, Field

from pipeline_manager.exceptions import ManifestError
from pipeline_manager.logging_config import get_logger
from pipeline_manager.models.pipeline import ImageSpec

logger = get_logger(__name__)

DEFAULT_COMPONENTS = ("backend", "frontend")
MANIFEST_SUFFIXES = (".yaml", ".yml")


class ManifestObject(BaseModel):
    """A single Kubernetes object parsed from a manifest file."""

    api_version: str
    kind: str
    name: str
    namespace: str | None = None
    source: str
    body: dict = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.kind, self.namespace or "", self.name)

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"

    def pod_labels(self) -> dict:
        """Labels of the pod template (Deployments only)."""
        template = (self.body.get("spec") or {}).get("template") or {}
        return (template.get("metadata", {}) or {}).get("labels", {}) or {}

    def selector(self) -> dict:
        """Label selector of a Deployment (matchLabels) or a Service."""
        selector = (self.body.get("spec") or {}).get("selector") or {}
        if self.kind == "Deployment":
            return selector.get("matchLabels", {}) or {}
        return selector

    def backend_services(self) -> list[str]:
        """Service names an Ingress routes to."""
        spec = self.body.get("spec") or {}
        names = []
        default = (spec.get("defaultBackend") or {}).get("service", {}) or {}
        if default.get("name"):
            names.append(default["name"])
        for rule in spec.get("rules", []) or []:
            for path in (rule.get("http") or {}).get("paths", []) or []:
                service = (path.get("backend") or {}).get("service", {}) or {}
                if service.get("name"):
                    names.append(service["name"])
        return names


def split_image(image: str) -> tuple[str, str | None]:
    """Split an image reference into (name, tag). Digests are kept in the name."""
    if "@" in image:
        return image, None
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[:colon], image[colon + 1 :]
    return image, None


class ManifestSet:
    """The set of Kubernetes objects applied by the deploy stage."""

    def __init__(self, objects: list[ManifestObject] | None = None):
        self.objects = list(objects or [])

    def __len__(self) -> int:
        return len(self.objects)

    def __iter__(self):
        return iter(self.objects)

    @classmethod
    def load(cls, directory: str | Path) -> "ManifestSet":
        """Parse every manifest file in a directory.

        Raises:
            ManifestError: If the directory is missing or a file cannot be parsed
        """
        directory = Path(directory)
        logger.debug(f"Loading manifests from: {directory}")

        if not directory.is_dir():
            raise ManifestError(
                f"Manifest directory not found: {directory}",
                f"Expected location: {directory.absolute()}",
            )

        objects = []
        files = sorted(p for p in directory.iterdir() if p.suffix in MANIFEST_SUFFIXES)
        for path in files:
            try:
                with open(path) as f:
                    documents = list(yaml.safe_load_all(f))
            except yaml.YAMLError as e:
                raise ManifestError(f"Failed to parse manifest {path.name}", str(e))

            for index, document in enumerate(documents):
                if document is None:
                    continue
                objects.append(cls._parse_object(document, path, index))

        logger.info(f"Loaded {len(objects)} objects from {len(files)} manifest files")
        return cls(objects)

    @staticmethod
    def _parse_object(document, path: Path, index: int) -> ManifestObject:
        where = f"{path.name} (document {index + 1})"
        if not isinstance(document, dict):
            raise ManifestError(f"Manifest {where} is not a mapping")

        metadata = document.get("metadata") or {}
        missing = [
            field
            for field, value in (
                ("apiVersion", document.get("apiVersion")),
                ("kind", document.get("kind")),
                ("metadata.name", metadata.get("name") if isinstance(metadata, dict) else None),
            )
            if not value
        ]
        if missing:
            raise ManifestError(f"Manifest {where} is missing {', '.join(missing)}")

        try:
            return ManifestObject(
                api_version=document["apiVersion"],
                kind=document["kind"],
                name=metadata["name"],
                namespace=metadata.get("namespace"),
                source=str(path),
                body=document,
            )
        except pydantic.ValidationError as e:
            raise ManifestError(f"Manifest {where} is invalid", str(e))

    def of_kind(self, kind: str) -> list[ManifestObject]:
        return [o for o in self.objects if o.kind == kind]

    def deployments(self) -> list[ManifestObject]:
        return self.of_kind("Deployment")

    def services(self) -> list[ManifestObject]:
        return self.of_kind("Service")

    def ingresses(self) -> list[ManifestObject]:
        return self.of_kind("Ingress")

    def validate(self, components: tuple[str, ...] | list[str] = DEFAULT_COMPONENTS) -> list[str]:
        """Return every problem found in the set; an empty list means valid."""
        problems = []

        seen = set()
        for obj in self.objects:
            if obj.key in seen:
                problems.append(f"Duplicate object {obj} in {obj.source}")
            seen.add(obj.key)

        problems.extend(self._check_components(components))

        for deployment in self.deployments():
            selector = deployment.selector()
            labels = deployment.pod_labels()
            if not selector:
                problems.append(f"{deployment} has no spec.selector.matchLabels")
            elif not _matches(selector, labels):
                problems.append(
                    f"{deployment} selector {selector} does not match its pod labels {labels}"
                )

        for service in self.services():
            selector = service.selector()
            if not selector:
                continue
            if not any(
                _matches(selector, d.pod_labels())
                for d in self.deployments()
                if (d.namespace or "") == (service.namespace or "")
            ):
                problems.append(f"{service} selector {selector} matches no Deployment")

        for ingress in self.ingresses():
            service_names = {
                s.name for s in self.services() if (s.namespace or "") == (ingress.namespace or "")
            }
            for backend in ingress.backend_services():
                if backend not in service_names:
                    problems.append(f"{ingress} routes to unknown Service '{backend}'")

        return problems

    def _check_components(self, components) -> list[str]:
        problems = []
        for component in components:
            for kind in ("Deployment", "Service"):
                if not any(component in o.name for o in self.of_kind(kind)):
                    problems.append(f"Missing {kind} for component '{component}'")
        if not self.ingresses():
            problems.append("Missing Ingress definition")
        return problems

    def check(self, components: tuple[str, ...] | list[str] = DEFAULT_COMPONENTS) -> None:
        """Validate the set.

        Raises:
            ManifestError: With every problem listed in the details
        """
        problems = self.validate(components)
        if problems:
            raise ManifestError(
                f"Manifest set has {len(problems)} problem(s)",
                "\n".join(f"- {p}" for p in problems),
            )

    def set_image_tags(self, images: list[ImageSpec], registry: str, tag: str) -> list[dict]:
        """Render documents with container images pointing at this build.

        A container image is rewritten when its repository equals, or ends
        with, the repository of one of the pipeline images. The loaded
        objects are not modified.
        """
        rendered = []
        for obj in self.objects:
            document = copy.deepcopy(obj.body)
            if obj.kind == "Deployment":
                template = (document.get("spec") or {}).get("template") or {}
                pod_spec = template.get("spec") or {}
                for key in ("initContainers", "containers"):
                    for container in pod_spec.get(key, []) or []:
                        new_image = _retag(container.get("image", ""), images, registry, tag)
                        if new_image:
                            logger.debug(f"{obj}: {container.get('image')} -> {new_image}")
                            container["image"] = new_image
            rendered.append(document)
        return rendered


def _matches(selector: dict, labels: dict) -> bool:
    return all(labels.get(k) == v for k, v in selector.items())


def _retag(image: str, images: list[ImageSpec], registry: str, tag: str) -> str | None:
    name, _ = split_image(image)
    for spec in images:
        if name == spec.repository or name.endswith("/" + spec.repository):
            return spec.reference(registry, tag)
    return None


def dump_documents(documents: list[dict]) -> str:
    """Serialize documents as a multi-document YAML stream."""
    return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)
