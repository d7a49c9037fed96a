from __future__ import annotations

from typing import Dict

import pytest

from services.settings.models import TLSCertificate
from services.settings.tls import generate_self_signed


@pytest.fixture(scope="session")
def tls_pair() -> TLSCertificate:
    return generate_self_signed(["localhost", "127.0.0.1"], organization="Settings Tests")


@pytest.fixture(scope="session")
def other_tls_pair() -> TLSCertificate:
    return generate_self_signed(["example.test"], organization="Settings Tests")


@pytest.fixture
def complete_secret_data(tls_pair: TLSCertificate) -> Dict[str, bytes]:
    return {
        "admin.password": b"$argon2id$v=19$m=65536,t=3,p=4$c2FsdA$aGFzaA",
        "admin.passwordMtime": b"2024-01-02T03:04:05Z",
        "server.secretkey": b"\x00\x01signing-key",
        "tls.crt": tls_pair.cert_pem,
        "tls.key": tls_pair.key_pem,
        "webhook.github.secret": b"gh-hook",
        "oidc.clientSecret": b"s3cr3t",
    }


@pytest.fixture
def config_data() -> Dict[str, str]:
    return {
        "url": "https://cd.example.com",
        "dex.config": "connectors:\n- type: github\n  id: github\n",
        "repositories": (
            "- url: https://git.example.com/c.git\n"
            "- url: https://git.example.com/a.git\n"
            "  usernameSecret:\n    name: repo-secret\n    key: username\n"
            "- url: https://git.example.com/b.git\n"
            "  insecureIgnoreHostKey: true\n"
        ),
        "helm.repositories": "- url: https://charts.example.com\n  name: stable\n",
        "resource.exclusions": "- apiGroups: ['*.k8s.io']\n  kinds: ['*']\n  clusters: ['*']\n",
        "application.instanceLabelKey": "example.com/instance",
        "custom.key": "left alone",
    }
