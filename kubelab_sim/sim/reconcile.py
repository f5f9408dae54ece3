# kubelab_sim/sim/reconcile.py
from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Optional

from ..config import SimSettings
from ..errors import InvalidTransitionError
from ..model.entities import Deployment, Pod, PodTemplate, ReplicaSet, key_of
from ..types import DEPLOYMENT, REPLICA_SET, POD, RUNNING, SUCCEEDED, FAILED
from .garbage import GarbageCollector
from .lifecycle import PodLifecycle
from .ownership import OwnershipGraph
from .registry import ResourceRegistry
from .selector import select_pods_by_owner

log = logging.getLogger(__name__)

TEMPLATE_HASH_LABEL = "pod-template-hash"


class Reconciler:
    """
    Сводит желаемое число реплик к фактическому.

    - ReplicaSet: не хватает pod'ов -> создаём в Pending; лишние ->
      Terminating, начиная с самого нового (LIFO по uid).
    - Deployment: не больше двух активных поколений ReplicaSet.
      Шаг rollout: new += 1, old = target - new (сумма всегда == target).
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        graph: OwnershipGraph,
        lifecycle: PodLifecycle,
        gc: GarbageCollector,
        settings: SimSettings,
    ):
        self.registry = registry
        self.graph = graph
        self.lifecycle = lifecycle
        self.gc = gc
        self.settings = settings
        self._pod_counters: Dict[int, int] = {}

    # ------------------------------------------------------------------
    # ReplicaSet
    # ------------------------------------------------------------------

    def _next_pod_name(self, rs: ReplicaSet) -> str:
        while True:
            n = self._pod_counters.get(rs.uid, 0) + 1
            self._pod_counters[rs.uid] = n
            suffix = hashlib.sha1(f"{rs.name}/{n}".encode("utf-8")).hexdigest()[:5]
            name = f"{rs.name}-{suffix}"
            if not self.registry.exists(POD, name):
                return name

    def create_pod_for(self, rs: ReplicaSet) -> Pod:
        labels = dict(rs.template.labels)
        if TEMPLATE_HASH_LABEL in rs.selector:
            labels[TEMPLATE_HASH_LABEL] = rs.selector[TEMPLATE_HASH_LABEL]
        pod = self.registry.create(
            POD, self._next_pod_name(rs),
            owner=rs.name,
            image=rs.template.image,
            labels=labels,
        )
        self.graph.attach(key_of(rs), key_of(pod))
        self.lifecycle.admit(pod)
        return pod

    def reconcile_replicaset(self, rs: ReplicaSet) -> bool:
        if rs.deleting:
            return False

        changed = False
        owned = select_pods_by_owner(self.registry, self.graph, rs.name)

        # завершившиеся pod'ы не считаются репликами: убираем и заменяем
        for p in owned:
            if p.phase in (SUCCEEDED, FAILED):
                self.lifecycle.terminate(p.name)
                changed = True

        live = select_pods_by_owner(self.registry, self.graph, rs.name, active_only=True)
        diff = rs.replicas - len(live)
        if diff > 0:
            for _ in range(diff):
                self.create_pod_for(rs)
            log.info(f"ReplicaSet {rs.name}: created {diff} pod(s)")
            changed = True
        elif diff < 0:
            victims = sorted(live, key=lambda p: p.uid, reverse=True)[:-diff]
            for p in victims:
                self.lifecycle.terminate(p.name)
            log.info(f"ReplicaSet {rs.name}: terminating {-diff} pod(s): {', '.join(p.name for p in victims)}")
            changed = True
        return changed

    # ------------------------------------------------------------------
    # Deployment: поколения
    # ------------------------------------------------------------------

    def generations(self, dep: Deployment) -> List[ReplicaSet]:
        """Активные (не удаляемые) ReplicaSet'ы деплоймента, старые первыми."""
        result: List[ReplicaSet] = []
        for child in self.graph.children(key_of(dep)):
            if child.kind != REPLICA_SET:
                continue
            rs = self.registry.find(REPLICA_SET, child.name)
            if rs is not None and not rs.deleting:
                result.append(rs)
        result.sort(key=lambda rs: rs.uid)
        return result

    def create_generation(self, dep: Deployment, template: PodTemplate, replicas: int) -> ReplicaSet:
        collision = 0
        while True:
            pod_hash = template.template_hash(collision)
            name = f"{dep.name}-{pod_hash}"
            if not self.registry.exists(REPLICA_SET, name):
                break
            collision += 1

        selector = dict(dep.selector)
        selector[TEMPLATE_HASH_LABEL] = pod_hash
        rs = self.registry.create(
            REPLICA_SET, name,
            replicas=replicas,
            owner=dep.name,
            selector=selector,
            template=PodTemplate(image=template.image, labels=dict(template.labels)),
            revision=dep.revision,
            labels=dict(dep.selector),
        )
        self.graph.attach(key_of(dep), key_of(rs))
        log.info(f"Deployment {dep.name}: new ReplicaSet {name} (revision {dep.revision})")
        return rs

    def reconcile_deployment(self, dep: Deployment) -> bool:
        if dep.deleting:
            return False
        if self.generations(dep):
            return False
        # поколение удалили руками: поднимаем заново
        self.create_generation(dep, dep.template, dep.replicas)
        return True

    def scale_deployment(self, dep: Deployment, replicas: int) -> None:
        if dep.deleting:
            raise InvalidTransitionError(f"Deployment {dep.name} is being deleted")
        self.registry.update(DEPLOYMENT, dep.name, replicas=replicas)
        gens = self.generations(dep)
        if len(gens) == 1:
            self.registry.update(REPLICA_SET, gens[0].name, replicas=replicas)
        elif len(gens) == 2:
            old, new = gens
            new_replicas = min(new.replicas, replicas)
            self.registry.update(REPLICA_SET, new.name, replicas=new_replicas)
            self.registry.update(REPLICA_SET, old.name, replicas=replicas - new_replicas)
            self._finish_rollout_if_done(dep)

    # ------------------------------------------------------------------
    # Rollout
    # ------------------------------------------------------------------

    def start_rollout(self, dep: Deployment, template: PodTemplate) -> Optional[ReplicaSet]:
        """
        Новый шаблон -> новое поколение. Незавершённое поколение
        предыдущего rollout'а бросается (удаляется каскадом).
        Возвращает новый ReplicaSet или None, если шаблон не изменился
        либо это откат к ещё живому старому поколению.
        """
        if dep.deleting:
            raise InvalidTransitionError(f"Deployment {dep.name} is being deleted")

        gens = self.generations(dep)
        if gens and gens[-1].template == template:
            return None

        new_revision = dep.revision + 1
        self.registry.update(DEPLOYMENT, dep.name, template=template, revision=new_revision)

        if not gens:
            # старого поколения нет: раскатывать не с чего
            return self.create_generation(dep, template, dep.replicas)

        if len(gens) == 2:
            old, abandoned = gens
            log.info(f"Deployment {dep.name}: abandoning unfinished ReplicaSet {abandoned.name}")
            self.gc.delete(key_of(abandoned))
            self.registry.update(REPLICA_SET, old.name, replicas=dep.replicas)
            if old.template == template:
                self.registry.update(REPLICA_SET, old.name, revision=new_revision)
                return None

        rs = self.create_generation(dep, template, 0)
        self.rollout_step(dep)
        return rs

    def rollout_in_progress(self, dep: Deployment) -> bool:
        return len(self.generations(dep)) == 2

    def _generation_ready(self, rs: ReplicaSet) -> bool:
        live = select_pods_by_owner(self.registry, self.graph, rs.name, active_only=True)
        return len(live) == rs.replicas and all(p.phase == RUNNING for p in live)

    def rollout_step(self, dep: Deployment) -> bool:
        """
        Один шаг rollout'а: новое поколение +1, старое получает остаток.
        Подъём и снижение идут парой в одном шаге, поэтому сумма desired
        по поколениям всегда равна dep.replicas (без surge и провала).
        """
        gens = self.generations(dep)
        if len(gens) != 2:
            return False
        old, new = gens
        new_replicas = min(dep.replicas, new.replicas + 1)
        old_replicas = max(0, dep.replicas - new_replicas)
        self.registry.update(REPLICA_SET, new.name, replicas=new_replicas)
        self.registry.update(REPLICA_SET, old.name, replicas=old_replicas)
        log.info(f"Deployment {dep.name} rollout: {new.name}={new_replicas}, {old.name}={old_replicas}")
        self._finish_rollout_if_done(dep)
        return True

    def _finish_rollout_if_done(self, dep: Deployment) -> None:
        gens = self.generations(dep)
        if len(gens) == 2 and gens[0].replicas == 0:
            log.info(f"Deployment {dep.name}: rollout complete, deleting {gens[0].name}")
            self.gc.delete(key_of(gens[0]))

    def step_rollouts(self) -> int:
        """На тике: шаг для каждого rollout'а, чьё новое поколение уже Running."""
        steps = 0
        for dep in self.registry.list(DEPLOYMENT):
            if dep.deleting:
                continue
            gens = self.generations(dep)
            if len(gens) == 2 and self._generation_ready(gens[1]):
                self.rollout_step(dep)
                steps += 1
        return steps

    # ------------------------------------------------------------------

    def reconcile(self) -> int:
        """Проходы до сходимости. Возвращает число проходов с изменениями."""
        passes = 0
        for _ in range(self.settings.max_reconcile_passes):
            changed = False
            for dep in self.registry.list(DEPLOYMENT):
                changed = self.reconcile_deployment(dep) or changed
            for rs in self.registry.list(REPLICA_SET):
                changed = self.reconcile_replicaset(rs) or changed
            if not changed:
                return passes
            passes += 1
        log.warning(f"Reconcile did not converge in {self.settings.max_reconcile_passes} passes")
        return passes
