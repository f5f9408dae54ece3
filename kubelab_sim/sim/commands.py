# kubelab_sim/sim/commands.py
from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Callable, Dict, Iterable, Optional

from ..errors import (
    CommandSyntaxError, InvalidTransitionError, KubeLabError, AlreadyExistsError,
)
from ..model.entities import PodTemplate, key_of
from ..model.quantity import parse_storage
from ..types import (
    NODE, DEPLOYMENT, REPLICA_SET, POD, SERVICE, CONFIG_MAP, SECRET,
    PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM, SERVICE_TYPES,
    RUNNING, CRASH_LOOP_BACK_OFF, FAILED, UNKNOWN, TERMINATING,
)
from .cluster import Cluster
from .garbage import deletion_in_progress
from .lifecycle import can_transition
from .parser import normalize_kind, parse_command, parse_list, parse_mapping
from .reconcile import TEMPLATE_HASH_LABEL
from .result import Command, CommandResult
from .selector import select_pods_by_node, select_service_members

log = logging.getLogger(__name__)

NAME_RE = re.compile(r"[a-z0-9]([-a-z0-9.]*[a-z0-9])?")

# Как kubectl пишет тип ресурса в ответах
DISPLAY_KIND = {
    DEPLOYMENT: "deployment.apps",
    REPLICA_SET: "replicaset.apps",
    POD: "pod",
    NODE: "node",
    SERVICE: "service",
    CONFIG_MAP: "configmap",
    SECRET: "secret",
    PERSISTENT_VOLUME: "persistentvolume",
    PERSISTENT_VOLUME_CLAIM: "persistentvolumeclaim",
}


def _ref(kind: str, name: str) -> str:
    return f"{DISPLAY_KIND.get(kind, kind.lower())}/{name}"


class CommandEngine:
    """
    Единственная точка мутации кластера.

    Порядок: проверки (существование, уникальность, диапазоны) ->
    применение -> reconcile до сходимости. События команды копятся
    в bus.batch() и уходят подписчикам только после её завершения;
    отклонённая команда не порождает ни одного события.
    """

    def __init__(self, cluster: Cluster):
        self.cluster = cluster
        self.registry = cluster.registry
        self._handlers: Dict[str, Callable[[Command], str]] = {
            "create": self._create,
            "scale": self._scale,
            "expose": self._expose,
            "delete": self._delete,
            "inject-fault": self._inject_fault,
            "fix-fault": self._fix_fault,
            "rollout": self._rollout,
            "get": self._get,
        }

    # ------------------------------------------------------------------
    # Вход
    # ------------------------------------------------------------------

    def run(self, line: str) -> CommandResult:
        """Строка терминала -> результат."""
        try:
            cmd = parse_command(line)
        except CommandSyntaxError as e:
            log.warning(f"Command rejected: {line!r}: {e}")
            return CommandResult(ok=False, message=f"error: {e}")
        return self.execute(cmd)

    def execute(self, cmd: Command) -> CommandResult:
        handler = self._handlers.get(cmd.verb)
        if handler is None:
            return CommandResult(ok=False, message=f'error: unknown command "{cmd.verb}"')

        try:
            if not cmd.kind:
                raise CommandSyntaxError(f"{cmd.verb}: resource type is required")
            cmd = replace(cmd, kind=normalize_kind(cmd.kind))
            if cmd.verb != "get" and not cmd.name:
                raise CommandSyntaxError(f"{cmd.verb} {cmd.kind}: resource name is required")
            with self.cluster.bus.batch():
                message = handler(cmd)
        except KubeLabError as e:
            log.warning(f"Command rejected: {cmd}: {e}")
            return CommandResult(ok=False, message=f"error: {e}")

        # команда применена; шторм подписчика её не отменяет
        storms = self.cluster.bus.storms
        if storms:
            message += f" (warning: {len(storms)} event chain(s) cut at depth {self.cluster.bus.max_depth})"
        log.info(f"Command ok: {cmd} -> {message}")
        return CommandResult(ok=True, message=message)

    # ------------------------------------------------------------------
    # Проверки параметров
    # ------------------------------------------------------------------

    @staticmethod
    def _require_kind(cmd: Command, allowed: Iterable[str]) -> None:
        allowed = tuple(allowed)
        if cmd.kind not in allowed:
            raise CommandSyntaxError(
                f"{cmd.verb} is not supported for {cmd.kind} (supported: {', '.join(allowed)})"
            )

    @staticmethod
    def _only(cmd: Command, *allowed: str) -> None:
        unknown = sorted(set(cmd.params) - set(allowed))
        if unknown:
            raise CommandSyntaxError(f"unknown parameter(s) for {cmd.verb} {cmd.kind}: {', '.join(unknown)}")

    @staticmethod
    def _int_param(
        cmd: Command,
        key: str,
        default: Optional[int],
        minimum: int = 0,
        maximum: Optional[int] = None,
    ) -> Optional[int]:
        raw = cmd.params.get(key)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            raise CommandSyntaxError(f'{key} must be an integer, got "{raw}"') from None
        if value < minimum:
            raise CommandSyntaxError(f"{key} must be >= {minimum}, got {value}")
        if maximum is not None and value > maximum:
            raise CommandSyntaxError(f"{key} must be <= {maximum}, got {value}")
        return value

    def _new_name(self, kind: str, name: str) -> None:
        if not NAME_RE.fullmatch(name) or len(name) > 63:
            raise CommandSyntaxError(
                f'invalid name "{name}": use lowercase letters, digits and "-" (max 63 chars)'
            )
        if self.registry.exists(kind, name):
            raise AlreadyExistsError(kind, name)

    @staticmethod
    def _service_type(raw: Optional[str]) -> str:
        if raw is None:
            return "ClusterIP"
        for t in SERVICE_TYPES:
            if t.lower() == raw.lower():
                return t
        raise CommandSyntaxError(f'service type must be one of {", ".join(SERVICE_TYPES)}, got "{raw}"')

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def _create(self, cmd: Command) -> str:
        creators = {
            NODE: self._create_node,
            POD: self._create_pod,
            DEPLOYMENT: self._create_deployment,
            REPLICA_SET: self._create_replicaset,
            SERVICE: self._create_service,
            CONFIG_MAP: self._create_data_object,
            SECRET: self._create_data_object,
            PERSISTENT_VOLUME: self._create_volume,
            PERSISTENT_VOLUME_CLAIM: self._create_claim,
        }
        self._new_name(cmd.kind, cmd.name)
        creators[cmd.kind](cmd)
        return f"{_ref(cmd.kind, cmd.name)} created"

    def _create_node(self, cmd: Command) -> None:
        self._only(cmd, "capacity")
        capacity = self._int_param(cmd, "capacity", None)
        self.registry.create(NODE, cmd.name, capacity=capacity)
        # новая ёмкость: Pending-поды без ноды пробуем снова
        self.cluster.lifecycle.retry_unscheduled()

    def _create_pod(self, cmd: Command) -> None:
        self._only(cmd, "image", "labels", "configmap", "secret", "claim")
        labels = parse_mapping(cmd.params.get("labels", "")) or {"run": cmd.name}
        refs = {
            CONFIG_MAP: parse_list(cmd.params.get("configmap", "")),
            SECRET: parse_list(cmd.params.get("secret", "")),
            PERSISTENT_VOLUME_CLAIM: parse_list(cmd.params.get("claim", "")),
        }
        for kind, names in refs.items():
            for ref in names:
                self.registry.get(kind, ref)

        pod = self.registry.create(
            POD, cmd.name,
            image=cmd.params.get("image", "nginx"),
            labels=labels,
            config_maps=refs[CONFIG_MAP],
            secrets=refs[SECRET],
            claims=refs[PERSISTENT_VOLUME_CLAIM],
        )
        self.cluster.lifecycle.admit(pod)

    def _template_from(self, cmd: Command) -> PodTemplate:
        labels = parse_mapping(cmd.params.get("labels", "")) or {"app": cmd.name}
        return PodTemplate(image=cmd.params.get("image", "nginx"), labels=labels)

    def _create_deployment(self, cmd: Command) -> None:
        self._only(cmd, "replicas", "image", "labels")
        replicas = self._replica_count(cmd, 1)
        template = self._template_from(cmd)
        dep = self.registry.create(
            DEPLOYMENT, cmd.name,
            replicas=replicas,
            selector=dict(template.labels),
            template=template,
            labels=dict(template.labels),
        )
        self.cluster.reconciler.create_generation(dep, template, replicas)
        self.cluster.reconcile()

    def _create_replicaset(self, cmd: Command) -> None:
        self._only(cmd, "replicas", "image", "labels")
        replicas = self._replica_count(cmd, 1)
        template = self._template_from(cmd)
        self.registry.create(
            REPLICA_SET, cmd.name,
            replicas=replicas,
            selector=dict(template.labels),
            template=template,
            labels=dict(template.labels),
        )
        self.cluster.reconcile()

    def _create_service(self, cmd: Command) -> None:
        self._only(cmd, "type", "port", "selector")
        svc_type = self._service_type(cmd.params.get("type"))
        port = self._int_param(cmd, "port", 80, minimum=1, maximum=65535)
        selector = parse_mapping(cmd.params.get("selector", "")) or {"app": cmd.name}
        self.registry.create(SERVICE, cmd.name, type=svc_type, port=port, selector=selector)

    def _create_data_object(self, cmd: Command) -> None:
        # все параметры: это данные: create configmap cfg ENV=prod LEVEL=debug
        data = dict(cmd.params)
        if "from-literal" in data:
            data.update(parse_mapping(data.pop("from-literal")))
        self.registry.create(cmd.kind, cmd.name, data=data)

    def _create_volume(self, cmd: Command) -> None:
        self._only(cmd, "size")
        size = cmd.params.get("size", "1Gi")
        parse_storage(size)
        self.registry.create(PERSISTENT_VOLUME, cmd.name, size=size)
        self._bind_pending_claims()

    def _create_claim(self, cmd: Command) -> None:
        self._only(cmd, "size", "volume")
        size = cmd.params.get("size", "1Gi")
        requested = parse_storage(size)

        volume = None
        wanted = cmd.params.get("volume")
        if wanted:
            volume = self.registry.get(PERSISTENT_VOLUME, wanted)
            if volume.bound_to is not None:
                raise InvalidTransitionError(f"PersistentVolume {wanted} is already bound to {volume.bound_to}")
            if parse_storage(volume.size) < requested:
                raise InvalidTransitionError(f"PersistentVolume {wanted} ({volume.size}) is smaller than {size}")
        else:
            volume = self._find_volume_for(requested)

        claim = self.registry.create(PERSISTENT_VOLUME_CLAIM, cmd.name, size=size)
        if volume is not None:
            self._bind(volume, claim)

    def _find_volume_for(self, requested: int):
        for pv in self.registry.list(PERSISTENT_VOLUME):
            if pv.bound_to is None and parse_storage(pv.size) >= requested:
                return pv
        return None

    def _bind(self, volume, claim) -> None:
        self.cluster.graph.bind(key_of(volume), key_of(claim))
        self.registry.update(PERSISTENT_VOLUME, volume.name, bound_to=claim.name, phase="Bound")
        self.registry.update(PERSISTENT_VOLUME_CLAIM, claim.name, bound_to=volume.name, phase="Bound")

    def _bind_pending_claims(self) -> None:
        for claim in self.registry.list(PERSISTENT_VOLUME_CLAIM):
            if claim.bound_to is not None:
                continue
            volume = self._find_volume_for(parse_storage(claim.size))
            if volume is not None:
                self._bind(volume, claim)

    # ------------------------------------------------------------------
    # scale / expose / rollout
    # ------------------------------------------------------------------

    def _replica_count(self, cmd: Command, default: Optional[int]) -> Optional[int]:
        return self._int_param(cmd, "replicas", default, maximum=self.cluster.settings.max_replicas)

    def _replicas(self, cmd: Command) -> int:
        if "replicas" not in cmd.params and cmd.args:
            cmd = replace(cmd, params={**cmd.params, "replicas": cmd.args[0]})
        replicas = self._replica_count(cmd, None)
        if replicas is None:
            raise CommandSyntaxError("scale: replicas=<n> is required")
        return replicas

    def _scale(self, cmd: Command) -> str:
        self._require_kind(cmd, (DEPLOYMENT, REPLICA_SET))
        self._only(cmd, "replicas")
        replicas = self._replicas(cmd)
        target = self.registry.get(cmd.kind, cmd.name)
        if target.deleting:
            raise InvalidTransitionError(f"{cmd.kind} {cmd.name} is being deleted")

        if cmd.kind == DEPLOYMENT:
            self.cluster.reconciler.scale_deployment(target, replicas)
        else:
            if target.owner is not None:
                raise InvalidTransitionError(
                    f"ReplicaSet {cmd.name} is managed by Deployment {target.owner}; scale the deployment instead"
                )
            self.registry.update(REPLICA_SET, cmd.name, replicas=replicas)

        self.cluster.reconcile()
        return f"{_ref(cmd.kind, cmd.name)} scaled to {replicas}"

    def _expose(self, cmd: Command) -> str:
        self._require_kind(cmd, (DEPLOYMENT, REPLICA_SET, POD))
        self._only(cmd, "name", "type", "port")
        svc_name = cmd.params.get("name", cmd.name)
        svc_type = self._service_type(cmd.params.get("type"))
        port = self._int_param(cmd, "port", 80, minimum=1, maximum=65535)

        source = self.registry.get(cmd.kind, cmd.name)
        if deletion_in_progress(source):
            raise InvalidTransitionError(f"{cmd.kind} {cmd.name} is being deleted")
        raw = source.labels if cmd.kind == POD else source.selector
        selector = {k: v for k, v in raw.items() if k != TEMPLATE_HASH_LABEL}
        if not selector:
            raise CommandSyntaxError(f"{cmd.kind} {cmd.name} has no labels to select pods by")
        self._new_name(SERVICE, svc_name)

        service = self.registry.create(SERVICE, svc_name, type=svc_type, port=port, selector=selector)
        members = select_service_members(self.registry, service)
        return f"{_ref(SERVICE, svc_name)} exposed ({svc_type}, port {port}, {len(members)} endpoint(s))"

    def _rollout(self, cmd: Command) -> str:
        self._require_kind(cmd, (DEPLOYMENT,))
        self._only(cmd, "image", "labels")
        dep = self.registry.get(DEPLOYMENT, cmd.name)
        image = cmd.params.get("image")
        if not image:
            raise CommandSyntaxError("rollout: image=<image> is required")
        labels = parse_mapping(cmd.params.get("labels", "")) or dict(dep.template.labels)
        if any(labels.get(k) != v for k, v in dep.selector.items()):
            raise CommandSyntaxError(f"template labels must match the deployment selector {dep.selector}")

        revision = dep.revision
        rs = self.cluster.reconciler.start_rollout(dep, PodTemplate(image=image, labels=labels))
        self.cluster.reconcile()
        if rs is None:
            if dep.revision == revision:
                return f"{_ref(DEPLOYMENT, cmd.name)} unchanged"
            return f"{_ref(DEPLOYMENT, cmd.name)} rolled back to {image}"
        return f"{_ref(DEPLOYMENT, cmd.name)} rolling out {image} (replicaset {rs.name})"

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    def _delete(self, cmd: Command) -> str:
        self._only(cmd)
        entity = self.registry.get(cmd.kind, cmd.name)
        if deletion_in_progress(entity):
            return f'{DISPLAY_KIND[cmd.kind]} "{cmd.name}" is already being deleted'
        self.cluster.gc.delete(key_of(entity))
        if cmd.kind in (PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM):
            # освободившийся том или claim: ждущие claim'ы пробуем снова
            self._bind_pending_claims()
        self.cluster.reconcile()
        return f'{DISPLAY_KIND[cmd.kind]} "{cmd.name}" deleted'

    # ------------------------------------------------------------------
    # faults
    # ------------------------------------------------------------------

    def _inject_fault(self, cmd: Command) -> str:
        self._require_kind(cmd, (POD, NODE))
        lifecycle = self.cluster.lifecycle

        if cmd.kind == NODE:
            self._only(cmd)
            node = self.registry.get(NODE, cmd.name)
            if not node.ready:
                raise InvalidTransitionError(f"Node {cmd.name} is already unreachable")
            self.registry.update(NODE, cmd.name, ready=False)
            affected = 0
            for pod in select_pods_by_node(self.registry, cmd.name, include_terminating=False):
                if can_transition(pod.phase, UNKNOWN):
                    lifecycle.mark_unknown(pod.name)
                    affected += 1
            return f"{_ref(NODE, cmd.name)} unreachable, {affected} pod(s) Unknown"

        self._only(cmd, "type")
        fault = cmd.params.get("type", "crash").lower()
        targets = {"crash": CRASH_LOOP_BACK_OFF, "exit": FAILED}
        if fault not in targets:
            raise CommandSyntaxError(f'fault type must be one of {", ".join(targets)}, got "{fault}"')
        pod = self.registry.get(POD, cmd.name)
        if pod.phase != RUNNING:
            raise InvalidTransitionError(f"Pod {cmd.name} is {pod.phase}, faults can only be injected into Running pods")

        if fault == "crash":
            lifecycle.crash(cmd.name)
        else:
            lifecycle.fail(cmd.name)
            self.cluster.reconcile()
        return f"{_ref(POD, cmd.name)} fault injected ({targets[fault]})"

    def _fix_fault(self, cmd: Command) -> str:
        self._require_kind(cmd, (POD, NODE))
        self._only(cmd)
        lifecycle = self.cluster.lifecycle

        if cmd.kind == NODE:
            node = self.registry.get(NODE, cmd.name)
            if node.ready:
                raise InvalidTransitionError(f"Node {cmd.name} has no fault to fix")
            self.registry.update(NODE, cmd.name, ready=True)
            recovered = 0
            for pod in select_pods_by_node(self.registry, cmd.name):
                if pod.phase == UNKNOWN:
                    lifecycle.recover(pod.name)
                    recovered += 1
            lifecycle.retry_unscheduled()
            return f"{_ref(NODE, cmd.name)} reachable again, {recovered} pod(s) recovered"

        pod = lifecycle.fix(cmd.name)
        return f"{_ref(POD, cmd.name)} fixed, Running (restarts: {pod.restart_count})"

    # ------------------------------------------------------------------
    # get (только чтение)
    # ------------------------------------------------------------------

    def _get(self, cmd: Command) -> str:
        self._only(cmd)
        if cmd.name:
            entities = [self.registry.get(cmd.kind, cmd.name)]
        else:
            entities = self.registry.list(cmd.kind)
        if not entities:
            return f"No {cmd.kind} resources found."
        return "\n".join(self._describe(e) for e in entities)

    def _describe(self, e) -> str:
        if e.kind == POD:
            return f"{e.name}  {e.phase}  restarts={e.restart_count}  node={e.node or '<none>'}"
        if e.kind in (DEPLOYMENT, REPLICA_SET):
            ready = sum(
                1 for p in self.cluster.owned_pods(e.kind, e.name, active_only=True) if p.phase == RUNNING
            )
            line = f"{e.name}  ready={ready}/{e.replicas}"
            if e.kind == DEPLOYMENT and self.cluster.reconciler.rollout_in_progress(e):
                line += "  (rolling out)"
            return line
        if e.kind == SERVICE:
            members = select_service_members(self.registry, e)
            return f"{e.name}  {e.type}  port={e.port}  endpoints={len(members)}"
        if e.kind == NODE:
            pods = [p for p in select_pods_by_node(self.registry, e.name) if p.phase != TERMINATING]
            cap = e.capacity if e.capacity is not None else "-"
            return f"{e.name}  {'Ready' if e.ready else 'NotReady'}  pods={len(pods)}/{cap}"
        if e.kind in (PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM):
            return f"{e.name}  {e.size}  {e.phase}  bound={e.bound_to or '<none>'}"
        return f"{e.name}  keys={len(e.data)}"
