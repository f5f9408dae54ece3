# kubelab_sim/sim/parser.py
from __future__ import annotations

import shlex
from typing import Dict, List

from ..errors import CommandSyntaxError
from ..types import (
    Kind, NODE, DEPLOYMENT, REPLICA_SET, POD, SERVICE, CONFIG_MAP, SECRET,
    PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM,
)
from .result import Command

VERBS = ("create", "scale", "expose", "delete", "inject-fault", "fix-fault", "rollout", "get")

VERB_ALIASES = {
    "inject": "inject-fault",
    "break": "inject-fault",
    "fix": "fix-fault",
    "repair": "fix-fault",
    "set-image": "rollout",
}

# Короткие имена как в kubectl
KIND_ALIASES: Dict[str, Kind] = {
    "node": NODE, "nodes": NODE, "no": NODE,
    "deployment": DEPLOYMENT, "deployments": DEPLOYMENT, "deploy": DEPLOYMENT,
    "replicaset": REPLICA_SET, "replicasets": REPLICA_SET, "rs": REPLICA_SET,
    "pod": POD, "pods": POD, "po": POD,
    "service": SERVICE, "services": SERVICE, "svc": SERVICE,
    "configmap": CONFIG_MAP, "configmaps": CONFIG_MAP, "cm": CONFIG_MAP,
    "secret": SECRET, "secrets": SECRET,
    "persistentvolume": PERSISTENT_VOLUME, "persistentvolumes": PERSISTENT_VOLUME, "pv": PERSISTENT_VOLUME,
    "persistentvolumeclaim": PERSISTENT_VOLUME_CLAIM, "persistentvolumeclaims": PERSISTENT_VOLUME_CLAIM,
    "pvc": PERSISTENT_VOLUME_CLAIM,
}


def normalize_kind(raw: str) -> Kind:
    kind = KIND_ALIASES.get(raw.lower())
    if kind is None:
        # уже каноническое имя ("Deployment")
        for canonical in set(KIND_ALIASES.values()):
            if canonical.lower() == raw.lower():
                return canonical
        raise CommandSyntaxError(f'unknown resource type "{raw}"')
    return kind


def parse_mapping(raw: str) -> Dict[str, str]:
    """ "app=web,tier=frontend" -> {"app": "web", "tier": "frontend"} """
    result: Dict[str, str] = {}
    if not raw:
        return result
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise CommandSyntaxError(f'expected key=value, got "{item}"')
        k, v = item.split("=", 1)
        if not k:
            raise CommandSyntaxError(f'empty key in "{item}"')
        result[k.strip()] = v.strip()
    return result


def parse_list(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()] if raw else []


def parse_command(line: str) -> Command:
    """
    Разбор строки терминала:
      kubectl scale deployment web-app --replicas=5
      scale deploy/web-app replicas=5
      create configmap app-config ENV=production
    """
    try:
        tokens = shlex.split(line or "")
    except ValueError as e:
        raise CommandSyntaxError(f"cannot parse command: {e}") from None

    if tokens and tokens[0] == "kubectl":
        tokens = tokens[1:]
    if not tokens:
        raise CommandSyntaxError("empty command")

    verb = VERB_ALIASES.get(tokens[0].lower(), tokens[0].lower())
    if verb not in VERBS:
        raise CommandSyntaxError(f'unknown command "{tokens[0]}"')

    positional: List[str] = []
    params: Dict[str, str] = {}
    rest = tokens[1:]
    i = 0
    while i < len(rest):
        tok = rest[i]
        if tok.startswith("--"):
            body = tok[2:]
            if not body:
                raise CommandSyntaxError('unexpected "--"')
            if "=" in body:
                k, v = body.split("=", 1)
            elif i + 1 < len(rest) and not rest[i + 1].startswith("--") and "=" not in rest[i + 1]:
                k, v = body, rest[i + 1]
                i += 1
            else:
                k, v = body, "true"
            params[k] = v
        elif "=" in tok and not tok.startswith("="):
            k, v = tok.split("=", 1)
            params[k] = v
        else:
            positional.append(tok)
        i += 1

    kind = name = None
    if positional:
        head = positional.pop(0)
        if "/" in head:
            raw_kind, name = head.split("/", 1)
            kind = normalize_kind(raw_kind)
        else:
            kind = normalize_kind(head)
            if positional:
                name = positional.pop(0)

    if kind is None:
        raise CommandSyntaxError(f"{verb}: resource type is required")
    if verb != "get" and not name:
        raise CommandSyntaxError(f"{verb} {kind}: resource name is required")

    return Command(verb=verb, kind=kind, name=name, params=params, args=positional)
