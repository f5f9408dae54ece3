# run_scenario.py
"""
Прогон учебного сценария на кластере в памяти (без HTTP):
  python run_scenario.py
  python run_scenario.py --commands my_session.txt
"""
import argparse
import logging
from pathlib import Path

from kubelab_sim.config import SimSettings
from kubelab_sim.sim.cluster import Cluster
from kubelab_sim.sim.commands import CommandEngine
from kubelab_sim.types import POD, ENTITY_UPDATED

DEFAULT_SCRIPT = [
    "create deployment web replicas=3 image=nginx:1.25",
    "tick",
    "scale deployment web replicas=1",
    "tick",
    "expose deployment web port=80",
    "inject-fault pod {pod}",
    "fix-fault pod {pod}",
    "rollout deployment web image=nginx:1.26",
    "tick", "tick", "tick",
    "get pods",
]


def print_pods(cluster: Cluster) -> None:
    for p in cluster.list(POD):
        print(f"    {p.name:<32} {p.phase:<18} restarts={p.restart_count} node={p.node}")


def main():
    parser = argparse.ArgumentParser(description="Run a scripted kubelab session")
    parser.add_argument("--commands", type=Path, default=None, help="File with one command per line")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    cluster = Cluster(SimSettings(auto_tick=False))
    engine = CommandEngine(cluster)
    updates = []
    cluster.subscribe(ENTITY_UPDATED, updates.append)

    lines = DEFAULT_SCRIPT
    if args.commands is not None:
        lines = [ln.strip() for ln in args.commands.read_text("utf-8").splitlines()]
        lines = [ln for ln in lines if ln and not ln.startswith("#")]

    for line in lines:
        if line == "tick":
            cluster.tick()
            print(f"[t={cluster.now:5.1f}] tick")
            print_pods(cluster)
            continue

        if "{pod}" in line:
            running = [p for p in cluster.list(POD) if p.phase == "Running"]
            if not running:
                print(f"[t={cluster.now:5.1f}] skip: no Running pod for {line!r}")
                continue
            line = line.replace("{pod}", running[0].name)

        result = engine.run(line)
        status = "OK " if result.ok else "ERR"
        print(f"[t={cluster.now:5.1f}] {status} $ {line}")
        for out in result.message.splitlines():
            print(f"    {out}")

    print()
    print(f"Updates published: {len(updates)}")


if __name__ == "__main__":
    main()
