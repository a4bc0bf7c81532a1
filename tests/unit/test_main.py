"""
Unit tests for the main module — composition root and CLI.

Tests verify structlog configuration, the wiring logic and the JSON
answers printed by `run()` against a network config written to tmp_path.
No database connections are made.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog
import yaml
from cryptography.hazmat.primitives import serialization
from railway import ErrorCode, ResultAssertions

from fabric_resolver import main as main_module
from fabric_resolver.adapters.postgres_store import PsycopgKeyValueStore
from fabric_resolver.config import AppSettings, StoreSettings
from fabric_resolver.main import EXIT_FAILURE, EXIT_OK, build_identity_manager, configure_structlog, run
from tests.conftest import ORG1_MSP, cert_pem, key_pem, load_endpoint_config, make_certificate, make_key


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove settings variables that could leak in from the host."""
    for name in ("NETWORK_CONFIG_PATH", "ORGANIZATION", "LOG_LEVEL", "STORE__BACKEND", "STORE__DSN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def config_file(tmp_path: Path, network: dict[str, Any]) -> Path:
    """The test network with one embedded user, written as YAML."""
    key = make_key()
    network["organizations"]["Org1"]["users"] = {
        "User1": {
            "cert": {"pem": cert_pem(make_certificate("User1@org1.example.com", key)).decode()},
            "key": {"pem": key_pem(key).decode()},
        },
    }
    path = tmp_path / "network.yaml"
    path.write_text(yaml.safe_dump(network), encoding="utf-8")
    return path


@pytest.fixture()
def uncached_structlog(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """
    Let `run()` configure structlog without caching loggers.

    capsys closes its streams at teardown; a logger cached on one of them
    would fail in every later test.
    """
    configure = main_module.configure_structlog

    def _configure(log_level: str = "INFO") -> None:
        configure(log_level)
        structlog.configure(cache_logger_on_first_use=False)

    monkeypatch.setattr(main_module, "configure_structlog", _configure)
    yield
    structlog.reset_defaults()


def _answer(capsys: pytest.CaptureFixture[str]) -> dict[str, Any]:
    return json.loads(capsys.readouterr().out)


class TestConfigureStructlog:
    """Verify structlog configuration function."""

    def test_configure_structlog_sets_log_level(self) -> None:
        """
        GIVEN log_level="WARNING"
        WHEN configure_structlog is called
        THEN structlog is configured (no exception raised).
        """
        configure_structlog("WARNING")
        log = structlog.get_logger()
        assert log is not None

    def test_configure_structlog_defaults_to_info(self) -> None:
        configure_structlog()
        log = structlog.get_logger()
        assert log is not None

    def test_configure_structlog_invalid_level_falls_back(self) -> None:
        """
        GIVEN an invalid log_level string
        WHEN configure_structlog is called
        THEN it falls back to INFO (no crash).
        """
        configure_structlog("NONEXISTENT")
        log = structlog.get_logger()
        assert log is not None


class TestWiring:
    def test_postgres_backend_wires_db_stores(self, network: dict[str, Any]) -> None:
        """
        GIVEN settings selecting the postgres store backend
        WHEN the identity manager is built
        THEN its stores are PostgreSQL-backed (no connection is opened).
        """
        settings = AppSettings(
            network_config_path="unused.yaml",
            store=StoreSettings(backend="postgres", dsn="postgresql://u:p@db:5432/credentials"),
        )

        manager = ResultAssertions.assert_success(build_identity_manager(settings, load_endpoint_config(network)))

        assert manager.mspid == ORG1_MSP
        assert isinstance(manager._cert_store, PsycopgKeyValueStore)
        assert manager._user_store is None

    def test_organization_setting_overrides_client_section(self, network: dict[str, Any]) -> None:
        network["organizations"]["Org2"] = {"mspid": "Org2MSP"}
        settings = AppSettings(network_config_path="unused.yaml", organization="Org2")

        manager = ResultAssertions.assert_success(build_identity_manager(settings, load_endpoint_config(network)))

        assert manager.mspid == "Org2MSP"

    def test_no_organization_anywhere(self, network: dict[str, Any]) -> None:
        del network["client"]["organization"]
        settings = AppSettings(network_config_path="unused.yaml")

        ResultAssertions.assert_failure(
            build_identity_manager(settings, load_endpoint_config(network)), ErrorCode.CONFIGURATION_ERROR
        )


@pytest.mark.usefixtures("uncached_structlog")
class TestRun:
    """End-to-end CLI invocations."""

    def test_peer(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """
        GIVEN a network config file
        WHEN `peer peer0.org1.example.com` is run
        THEN the resolved peer is printed as JSON and the exit code is 0.
        """
        assert run(["--config", str(config_file), "peer", "peer0.org1.example.com"]) == EXIT_OK

        answer = _answer(capsys)
        assert answer["url"] == "grpcs://peer0.org1.example.com:7051"
        assert answer["tls_ca_certs"]["inline_pem"] is True
        assert answer["grpc_options"]["ssl-target-name-override"] == "peer0.org1.example.com"

    def test_orderer_by_url(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert run(["--config", str(config_file), "orderer", "grpcs://orderer.example.com:7050"]) == EXIT_OK
        assert _answer(capsys)["url"] == "grpcs://orderer.example.com:7050"

    def test_channel(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert run(["--config", str(config_file), "channel", "mychannel"]) == EXIT_OK

        answer = _answer(capsys)
        assert answer["peers"]["peer0.org1.example.com"]["event_source"] is False
        assert {p["mspid"] for p in answer["resolved_peers"]} == {ORG1_MSP}
        assert len(answer["orderers"]) == 1

    def test_identity(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """
        GIVEN a network config embedding User1's certificate and key
        WHEN `identity User1` is run
        THEN the user's MSP id and certificate subject are printed.
        """
        assert run(["--config", str(config_file), "identity", "User1"]) == EXIT_OK

        answer = _answer(capsys)
        assert answer["id"] == "User1"
        assert answer["mspid"] == ORG1_MSP
        assert answer["subject"] == "CN=User1@org1.example.com"
        assert len(answer["ski"]) == 64

    def test_identity_with_der_certificate(
        self, tmp_path: Path, network: dict[str, Any], capsys: pytest.CaptureFixture[str]
    ) -> None:
        """
        GIVEN User2's enrollment certificate stored as a DER file
        WHEN `identity User2` is run
        THEN the certificate subject is printed instead of a crash.
        """
        key = make_key()
        der_path = tmp_path / "User2-cert.der"
        der_path.write_bytes(make_certificate("User2@org1.example.com", key).public_bytes(serialization.Encoding.DER))
        network["organizations"]["Org1"]["users"] = {
            "User2": {"cert": {"path": str(der_path)}, "key": {"pem": key_pem(key).decode()}},
        }
        path = tmp_path / "network.yaml"
        path.write_text(yaml.safe_dump(network), encoding="utf-8")

        assert run(["--config", str(path), "identity", "User2"]) == EXIT_OK
        assert _answer(capsys)["subject"] == "CN=User2@org1.example.com"

    def test_trust(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert run(["--config", str(config_file), "trust"]) == EXIT_OK

        answer = _answer(capsys)
        assert answer["certificates"] == ["CN=tlsca.example.com"]
        assert answer["preload_error"] is None

    def test_config_path_from_environment(
        self, config_file: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NETWORK_CONFIG_PATH", str(config_file))
        assert run(["peer", "peer1.org1.example.com"]) == EXIT_OK
        assert _answer(capsys)["url"] == "grpcs://peer1.org1.example.com:8051"

    def test_unknown_peer_fails(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert run(["--config", str(config_file), "peer", "peer9.org9.example.com"]) == EXIT_FAILURE
        assert capsys.readouterr().out == ""

    def test_missing_config_file_fails(self, tmp_path: Path) -> None:
        assert run(["--config", str(tmp_path / "absent.yaml"), "trust"]) == EXIT_FAILURE

    def test_missing_settings_fail_fast(self, capsys: pytest.CaptureFixture[str]) -> None:
        """
        GIVEN neither --config nor NETWORK_CONFIG_PATH
        WHEN the CLI runs
        THEN it reports a configuration error and exits with 1.
        """
        assert run(["trust"]) == EXIT_FAILURE
        assert "FATAL: Configuration error" in capsys.readouterr().err

    def test_subcommand_required(self) -> None:
        with pytest.raises(SystemExit):
            run([])
