# kubelab_sim/exercises/catalog.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=list(errors))


Validator = Callable[[Any], ValidationResult]


@dataclass
class Exercise:
    """
    Упражнение на YAML-манифест.
    solution_validator: чистая функция: разобранный документ -> ValidationResult.
    """
    id: str
    level: int  # 1 beginner, 2 intermediate, 3 advanced
    title: str
    prompt: str
    solution_validator: Validator
    hints: List[str] = field(default_factory=list)
    base_reward: int = 25
    starter: str = ""
    explanation: Optional[str] = None


# ----------------------------------------------------------------------
# Безопасный доступ к вложенным полям: документ может быть чем угодно
# ----------------------------------------------------------------------

def _dig(obj: Any, *path: Any) -> Any:
    for step in path:
        if isinstance(step, int):
            if not isinstance(obj, list) or len(obj) <= step:
                return None
            obj = obj[step]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(step)
        if obj is None:
            return None
    return obj


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _docs(parsed: Any) -> List[Any]:
    return parsed if isinstance(parsed, list) else [parsed]


def _find_kind(parsed: Any, kind: str) -> Optional[Dict[str, Any]]:
    for doc in _docs(parsed):
        if isinstance(doc, dict) and doc.get("kind") == kind:
            return doc
    return None


def _first_container(doc: Any, *prefix: str) -> Optional[Dict[str, Any]]:
    container = _dig(doc, *prefix, "containers", 0)
    return container if isinstance(container, dict) else None


def _check_header(doc: Any, errors: List[str], api_version: str, kind: str, name: str) -> None:
    if _dig(doc, "apiVersion") != api_version:
        errors.append(f'apiVersion must be "{api_version}"')
    if _dig(doc, "kind") != kind:
        errors.append(f'kind must be "{kind}"')
    if _dig(doc, "metadata", "name") != name:
        errors.append(f'metadata.name must be "{name}"')


def _check_service(service: Any, errors: List[str]) -> None:
    if _dig(service, "spec", "type") != "ClusterIP":
        errors.append('Service type must be "ClusterIP"')
    port = _dig(service, "spec", "ports", 0, "port")
    if not _is_number(port) or port != 80:
        errors.append("Service port must be 80")


# ----------------------------------------------------------------------
# Beginner
# ----------------------------------------------------------------------

def validate_fix_indentation(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    _check_header(parsed, errors, "v1", "Pod", "my-pod")
    containers = _dig(parsed, "spec", "containers")
    if not isinstance(containers, list):
        errors.append("spec.containers must be an array")
    else:
        c = _first_container(parsed, "spec")
        if c is None or c.get("name") != "nginx" or c.get("image") != "nginx:latest":
            errors.append('Container must have name "nginx" and image "nginx:latest"')
    return ValidationResult.from_errors(errors)


def validate_complete_pod(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    containers = _dig(parsed, "spec", "containers")
    if not isinstance(containers, list):
        errors.append("spec.containers must be an array")
    elif not containers:
        errors.append("At least one container must be defined")
    else:
        c = _first_container(parsed, "spec") or {}
        if c.get("name") != "web":
            errors.append('Container name must be "web"')
        if c.get("image") != "nginx:1.21":
            errors.append('Container image must be "nginx:1.21"')
    return ValidationResult.from_errors(errors)


def validate_key_value_syntax(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    _check_header(parsed, errors, "v1", "Pod", "test-pod")
    if _dig(parsed, "spec", "containers") is None:
        errors.append("spec.containers must exist")
    return ValidationResult.from_errors(errors)


# ----------------------------------------------------------------------
# Intermediate
# ----------------------------------------------------------------------

def validate_create_deployment(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    if _dig(parsed, "apiVersion") != "apps/v1":
        errors.append('apiVersion must be "apps/v1" for Deployments')
    if _dig(parsed, "kind") != "Deployment":
        errors.append('kind must be "Deployment"')
    if _dig(parsed, "metadata", "name") != "my-deployment":
        errors.append('metadata.name must be "my-deployment"')
    replicas = _dig(parsed, "spec", "replicas")
    if not _is_number(replicas) or replicas != 3:
        errors.append("spec.replicas must be 3")
    if _dig(parsed, "spec", "template", "spec", "containers") is None:
        errors.append("spec.template.spec.containers must exist")
    else:
        c = _first_container(parsed, "spec", "template", "spec")
        if c is None or c.get("image") != "nginx:latest":
            errors.append('Container image must be "nginx:latest"')
    return ValidationResult.from_errors(errors)


def validate_resource_limits(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    c = _first_container(parsed, "spec", "template", "spec")
    if c is None:
        errors.append("Container not found")
    elif not isinstance(c.get("resources"), dict):
        errors.append("resources field is missing")
    else:
        expected = [
            ("requests", "cpu", "100m", "CPU request"),
            ("requests", "memory", "128Mi", "Memory request"),
            ("limits", "cpu", "200m", "CPU limit"),
            ("limits", "memory", "256Mi", "Memory limit"),
        ]
        for section, res, value, title in expected:
            if _dig(c, "resources", section, res) != value:
                errors.append(f'{title} must be "{value}"')
    return ValidationResult.from_errors(errors)


def validate_labels_and_selectors(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    match_labels = _dig(parsed, "spec", "selector", "matchLabels")
    if not isinstance(match_labels, dict):
        errors.append("spec.selector.matchLabels must exist")
    elif match_labels.get("app") != "webapp":
        errors.append('selector.matchLabels.app must be "webapp"')

    labels = _dig(parsed, "spec", "template", "metadata", "labels")
    if not isinstance(labels, dict):
        errors.append("spec.template.metadata.labels must exist")
    elif labels.get("app") != "webapp":
        errors.append('template.metadata.labels.app must be "webapp"')
    return ValidationResult.from_errors(errors)


# ----------------------------------------------------------------------
# Advanced (несколько документов через ---)
# ----------------------------------------------------------------------

def validate_multi_resource(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    deployment = _find_kind(parsed, "Deployment")
    service = _find_kind(parsed, "Service")

    if deployment is None:
        errors.append("Deployment resource not found")
    else:
        if _dig(deployment, "metadata", "name") != "api":
            errors.append('Deployment name must be "api"')
        replicas = _dig(deployment, "spec", "replicas")
        if not _is_number(replicas) or replicas != 2:
            errors.append("Deployment replicas must be 2")
        c = _first_container(deployment, "spec", "template", "spec")
        if c is None or c.get("image") != "myapp:1.0":
            errors.append('Deployment container image must be "myapp:1.0"')

    if service is None:
        errors.append("Service resource not found")
    else:
        if _dig(service, "metadata", "name") != "api-service":
            errors.append('Service name must be "api-service"')
        _check_service(service, errors)
    return ValidationResult.from_errors(errors)


def validate_app_stack(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    deployment = _find_kind(parsed, "Deployment")
    service = _find_kind(parsed, "Service")
    config_map = _find_kind(parsed, "ConfigMap")

    if deployment is None or _dig(deployment, "metadata", "name") != "app":
        errors.append('Deployment named "app" not found')
    else:
        c = _first_container(deployment, "spec", "template", "spec")
        if c is None or c.get("image") != "nginx":
            errors.append('Deployment container image must be "nginx"')

    if service is None or _dig(service, "metadata", "name") != "app-service":
        errors.append('Service named "app-service" not found')
    else:
        _check_service(service, errors)

    if config_map is None or _dig(config_map, "metadata", "name") != "app-config":
        errors.append('ConfigMap named "app-config" not found')
    elif _dig(config_map, "data", "ENV") != "production":
        errors.append('ConfigMap must have data.ENV = "production"')
    return ValidationResult.from_errors(errors)


def validate_find_and_fix(parsed: Any) -> ValidationResult:
    errors: List[str] = []
    if _dig(parsed, "apiVersion") != "apps/v1":
        errors.append('Deployment must use apiVersion "apps/v1", not "v1"')
    if _dig(parsed, "metadata", "name") != "broken-deploy":
        errors.append('metadata.name must be properly indented and set to "broken-deploy"')
    replicas = _dig(parsed, "spec", "replicas")
    if not _is_number(replicas) or replicas != 3:
        errors.append("spec.replicas must be a number (3), not a string")

    c = _first_container(parsed, "spec", "template", "spec")
    if c is None:
        errors.append("Container definition is missing or malformed")
    else:
        port = _dig(c, "ports", 0, "containerPort")
        if not _is_number(port) or port != 80:
            errors.append("containerPort must be a number (80), not a string")
        if _dig(c, "resources", "requests", "cpu") != "100m":
            errors.append("resources.requests.cpu must be properly indented under the container")
    return ValidationResult.from_errors(errors)


BUILTIN_EXERCISES: List[Exercise] = [
    Exercise(
        id="yaml-beginner-1",
        level=1,
        title="Fix Indentation",
        prompt="Fix the indentation errors in this YAML. All keys should be properly indented with 2 spaces.",
        starter=(
            "apiVersion: v1\n"
            "kind: Pod\n"
            "metadata:\n"
            "name: my-pod  # Missing indentation\n"
            "spec:\n"
            "  containers:\n"
            "- name: nginx  # Wrong indentation\n"
            "    image: nginx:latest\n"
        ),
        solution_validator=validate_fix_indentation,
        hints=[
            "YAML uses spaces for indentation, not tabs. Use 2 spaces per level.",
            'The "name" under "metadata" should be indented 2 spaces from "metadata".',
            'The "-" for array items should align with the parent key, '
            "and the item content should be indented 2 more spaces.",
        ],
        base_reward=25,
        explanation="Proper indentation is crucial in YAML: each nesting level needs consistent spacing.",
    ),
    Exercise(
        id="yaml-beginner-2",
        level=1,
        title="Complete Pod YAML",
        prompt='Complete this Pod YAML skeleton. Add a container named "web" using the "nginx:1.21" image.',
        starter=(
            "apiVersion: v1\n"
            "kind: Pod\n"
            "metadata:\n"
            "  name: web-pod\n"
            "spec:\n"
            "  containers:\n"
            "  # Add your container here\n"
        ),
        solution_validator=validate_complete_pod,
        hints=[
            "Use a dash (-) to start an array item in YAML.",
            'Each container needs a "name" and "image" field.',
            'The container should be indented under "containers:" with the name and image as key-value pairs.',
        ],
        base_reward=25,
        explanation="You've created a valid Pod with a container, the foundation of every workload.",
    ),
    Exercise(
        id="yaml-beginner-3",
        level=1,
        title="Fix Key-Value Syntax",
        prompt="This YAML has syntax errors. Fix the key-value pairs and ensure proper formatting.",
        starter=(
            "apiVersion v1\n"
            "kind: Pod\n"
            "metadata\n"
            "  name: test-pod\n"
            "spec\n"
            "  containers:\n"
            "    - name: app\n"
            '      image: "myapp:latest"\n'
        ),
        solution_validator=validate_key_value_syntax,
        hints=[
            "Key-value pairs in YAML use a colon (:) followed by a space.",
            'Parent keys (like "metadata" and "spec") need colons and their children should be indented.',
            'Check that "apiVersion", "metadata", and "spec" all have colons after them.',
        ],
        base_reward=25,
        explanation="All key-value pairs are now formatted with colons and proper indentation.",
    ),
    Exercise(
        id="yaml-intermediate-1",
        level=2,
        title="Create Deployment YAML",
        prompt=(
            'Create a Deployment YAML with 3 replicas. Use apiVersion "apps/v1", '
            'name it "my-deployment", and set the container image to "nginx:latest".'
        ),
        starter="# Create a complete Deployment YAML here\n",
        solution_validator=validate_create_deployment,
        hints=[
            'Deployments use apiVersion "apps/v1" and kind "Deployment".',
            "The spec.replicas field sets the desired number of pod replicas.",
            "Containers are defined under spec.template.spec.containers (note the nested structure).",
        ],
        base_reward=50,
        explanation="This Deployment will keep 3 replicas of your nginx pods running.",
    ),
    Exercise(
        id="yaml-intermediate-2",
        level=2,
        title="Add Resource Limits",
        prompt=(
            "Add resource requests and limits to this Deployment. Set CPU request: 100m, "
            "CPU limit: 200m, memory request: 128Mi, memory limit: 256Mi."
        ),
        starter=(
            "apiVersion: apps/v1\n"
            "kind: Deployment\n"
            "metadata:\n"
            "  name: resource-deployment\n"
            "spec:\n"
            "  replicas: 2\n"
            "  template:\n"
            "    spec:\n"
            "      containers:\n"
            "      - name: app\n"
            "        image: nginx:latest\n"
            "        # Add resources here\n"
        ),
        solution_validator=validate_resource_limits,
        hints=[
            'Resources are defined under each container as "resources: requests: ... limits: ...".',
            'CPU values use "m" for millicores (100m = 0.1 CPU).',
            'Memory values use "Mi" for mebibytes or "Gi" for gibibytes.',
        ],
        base_reward=50,
        explanation="Requests and limits let the scheduler place pods and prevent resource starvation.",
    ),
    Exercise(
        id="yaml-intermediate-3",
        level=2,
        title="Add Labels and Selectors",
        prompt='Add a label "app: webapp" to the pod template and match it in spec.selector.matchLabels.',
        starter=(
            "apiVersion: apps/v1\n"
            "kind: Deployment\n"
            "metadata:\n"
            "  name: labeled-deployment\n"
            "spec:\n"
            "  replicas: 1\n"
            "  template:\n"
            "    metadata:\n"
            "      # Add labels here\n"
            "    spec:\n"
            "      containers:\n"
            "      - name: app\n"
            "        image: nginx:latest\n"
            "  # Add selector here\n"
        ),
        solution_validator=validate_labels_and_selectors,
        hints=[
            "Labels are key-value pairs defined under metadata.labels.",
            "The selector.matchLabels must match the labels on the pod template.",
            'Both the pod template labels and selector should have "app: webapp".',
        ],
        base_reward=50,
        explanation="Labels and selectors are how a Deployment finds its Pods.",
    ),
    Exercise(
        id="yaml-advanced-1",
        level=3,
        title="Multi-Resource YAML",
        prompt=(
            'Create a Deployment and Service in the same YAML file. Use "---" to separate resources. '
            'Deployment: name "api", 2 replicas, image "myapp:1.0". '
            'Service: name "api-service", type ClusterIP, port 80.'
        ),
        starter='# Create Deployment and Service here\n# Separate them with "---"\n',
        solution_validator=validate_multi_resource,
        hints=[
            'Use "---" to separate multiple YAML documents in one file.',
            "Each resource (Deployment, Service) should be a separate document.",
            "The Service should use a selector that matches the Deployment's pod labels.",
        ],
        base_reward=75,
        explanation="You've described a complete application stack in a single file.",
    ),
    Exercise(
        id="yaml-advanced-2",
        level=3,
        title="Deployment + Service + ConfigMap",
        prompt=(
            'Create three resources: Deployment "app" (image "nginx"), Service "app-service" '
            '(ClusterIP, port 80), and ConfigMap "app-config" with data key "ENV" = "production".'
        ),
        starter='# Create Deployment, Service, and ConfigMap\n# Use "---" to separate resources\n',
        solution_validator=validate_app_stack,
        hints=[
            'ConfigMaps store configuration data under the "data" field as key-value pairs.',
            'All three resources should be in the same file, separated by "---".',
            "Make sure each resource has the correct apiVersion (v1 for Service/ConfigMap, apps/v1 for Deployment).",
        ],
        base_reward=75,
        explanation="Deployment, Service and ConfigMap now work together as one microservice.",
    ),
    Exercise(
        id="yaml-advanced-3",
        level=3,
        title="Find and Fix Errors",
        prompt=(
            "This YAML has multiple errors. Find and fix: wrong apiVersion, missing required fields, "
            "incorrect indentation, and invalid values."
        ),
        starter=(
            "apiVersion: v1\n"
            "kind: Deployment\n"
            "metadata:\n"
            "name: broken-deploy\n"
            "spec:\n"
            'replicas: "three"  # Should be a number\n'
            "  template:\n"
            "    metadata:\n"
            "      labels:\n"
            "        app: web\n"
            "    spec:\n"
            "      containers:\n"
            "      - name: app\n"
            "        image: nginx\n"
            "        ports:\n"
            '        - containerPort: "eighty"  # Should be a number\n'
            "resources:\n"
            "  requests:\n"
            "    cpu: 100m\n"
        ),
        solution_validator=validate_find_and_fix,
        hints=[
            'Deployments require apiVersion "apps/v1", not "v1".',
            "Numeric values like replicas and containerPort should not be quoted.",
            "Check indentation: resources belong under the container, not at the root level.",
        ],
        base_reward=75,
        explanation="You fixed the type mismatches and the indentation issues.",
    ),
]


def get_exercise(exercise_id: str) -> Optional[Exercise]:
    for ex in BUILTIN_EXERCISES:
        if ex.id == exercise_id:
            return ex
    return None


def exercises_by_level(level: int) -> List[Exercise]:
    return [ex for ex in BUILTIN_EXERCISES if ex.level == level]
