# check_backend.py
from __future__ import annotations

import requests

from kubelab_sim.config import SimSettings
from kubelab_sim.sim.cluster import Cluster
from kubelab_sim.sim.commands import CommandEngine
from kubelab_sim.types import DEPLOYMENT, REPLICA_SET, POD, SERVICE


BASE_URL = "http://localhost:8000"

SCRIPT = [
    "create deployment web replicas=3",
    "expose deployment web port=8080",
    "scale deployment web replicas=2",
    "create configmap app-config ENV=production",
    "create pv data size=5Gi",
    "create pvc claim size=1Gi",
]
KINDS = (DEPLOYMENT, REPLICA_SET, POD, SERVICE)


def run_local():
    """Тот же сценарий на кластере в памяти (без HTTP)."""
    cluster = Cluster(SimSettings(auto_tick=False))
    engine = CommandEngine(cluster)
    results = [engine.run(line).to_dict() for line in SCRIPT]
    state = {k: sorted(e.name for e in cluster.list(k)) for k in KINDS}
    return results, state


def run_api():
    """Сценарий через HTTP. Сервер лучше запускать с --no-auto-tick."""
    resp = requests.post(f"{BASE_URL}/reset")
    resp.raise_for_status()

    results = []
    for line in SCRIPT:
        resp = requests.post(f"{BASE_URL}/commands", json={"command": line})
        resp.raise_for_status()
        results.append(resp.json())

    state = {}
    for kind in KINDS:
        resp = requests.get(f"{BASE_URL}/resources/{kind}")
        resp.raise_for_status()
        state[kind] = sorted(item["name"] for item in resp.json())
    return results, state


def compare_results(local, api):
    print("=== COMMANDS ===")
    ok = True
    for line, a, b in zip(SCRIPT, local, api):
        same = a == b
        ok = ok and same
        mark = "same" if same else "DIFF"
        print(f"[{mark}] {line}")
        if not same:
            print(f"  local: {a}")
            print(f"  api:   {b}")
    print("COMMANDS OK:", ok)
    print()


def compare_state(local, api):
    print("=== STATE ===")
    ok = True
    for kind in KINDS:
        a, b = local.get(kind, []), api.get(kind, [])
        print(f"{kind:<12} local={len(a)} api={len(b)}")
        if a != b:
            ok = False
            print(f"  only local: {sorted(set(a) - set(b))}")
            print(f"  only api:   {sorted(set(b) - set(a))}")
    print("STATE OK:", ok)


def main():
    print("Running local scenario...")
    local_results, local_state = run_local()
    print("Running scenario against API...")
    api_results, api_state = run_api()

    compare_results(local_results, api_results)
    compare_state(local_state, api_state)


if __name__ == "__main__":
    main()
