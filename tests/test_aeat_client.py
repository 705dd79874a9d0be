from __future__ import annotations

import itertools
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
import requests.exceptions
from lxml import etree

from verifactu.config import ENDPOINTS, SOAP_ENV_NS, SUM_NS
from verifactu.services.aeat_client import AeatClient, wrap_envelope
from verifactu.services.exceptions import ProtocolError, TransportError
from verifactu.services.http_retry import AEAT_CONNECTIVITY, AEAT_SUBMIT

NO_WAIT = replace(AEAT_SUBMIT, delay=0.0)
NO_WAIT_CONNECTIVITY = replace(AEAT_CONNECTIVITY, delay=0.0)


def _mock_response(ok: bool = True, status_code: int = 200, text: str = "<ok/>"):
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status_code
    resp.text = text
    resp.iter_content.return_value = [text.encode("utf-8")]
    resp.encoding = "utf-8"
    return resp


def _document() -> etree._Element:
    root = etree.Element(f"{{{SUM_NS}}}RegFactuSistemaFacturacion", nsmap={"sum": SUM_NS})
    etree.SubElement(root, f"{{{SUM_NS}}}Cabecera")
    return root


@pytest.fixture
def client() -> AeatClient:
    return AeatClient(
        cert_path="/cert.pfx", cert_password="pass", policy=NO_WAIT, connectivity_policy=NO_WAIT_CONNECTIVITY
    )


class TestWrapEnvelope:
    def test_body_holds_document(self):
        envelope = etree.fromstring(wrap_envelope(_document()))
        assert envelope.tag == f"{{{SOAP_ENV_NS}}}Envelope"
        assert envelope.find(f"{{{SOAP_ENV_NS}}}Header") is not None
        body = envelope.find(f"{{{SOAP_ENV_NS}}}Body")
        assert body[0].tag == f"{{{SUM_NS}}}RegFactuSistemaFacturacion"

    def test_does_not_move_original(self):
        document = _document()
        wrap_envelope(document)
        assert document.getparent() is None


class TestSend:
    @patch("verifactu.services.aeat_client.post")
    def test_returns_body(self, mock_post, client, make_response):
        mock_post.return_value = _mock_response(text=make_response())
        assert client.send(_document()) == make_response()

    @patch("verifactu.services.aeat_client.post")
    def test_sandbox_url_by_default(self, mock_post, client):
        mock_post.return_value = _mock_response()
        client.send(_document())
        assert mock_post.call_args[0][0] == ENDPOINTS["sandbox"]
        assert "prewww1.aeat.es" in mock_post.call_args[0][0]

    @patch("verifactu.services.aeat_client.post")
    def test_production_url(self, mock_post):
        mock_post.return_value = _mock_response()
        AeatClient("/cert.pfx", production=True).send(_document())
        assert mock_post.call_args[0][0] == (
            "https://www1.agenciatributaria.gob.es/wlpl/TIKE-CONT/ws/"
            "SistemaFacturacion/VerifactuSOAP"
        )

    @patch("verifactu.services.aeat_client.post")
    def test_passes_pkcs12_args_and_timeouts(self, mock_post, client):
        mock_post.return_value = _mock_response()
        client.send(_document())
        _, kwargs = mock_post.call_args
        assert kwargs["pkcs12_filename"] == "/cert.pfx"
        assert kwargs["pkcs12_password"] == "pass"
        assert kwargs["timeout"] == (10, 60)
        assert kwargs["stream"] is True
        assert kwargs["headers"]["Content-Type"].startswith("text/xml")

    @patch("verifactu.services.aeat_client.post")
    def test_posts_soap_envelope(self, mock_post, client):
        mock_post.return_value = _mock_response()
        client.send(_document())
        payload = mock_post.call_args[1]["data"]
        assert payload.startswith(b"<?xml")
        assert b"RegFactuSistemaFacturacion" in payload
        assert etree.fromstring(payload).tag == f"{{{SOAP_ENV_NS}}}Envelope"

    @patch("verifactu.services.aeat_client.post")
    @pytest.mark.parametrize(
        "exc",
        [
            requests.exceptions.ConnectionError("reset"),
            requests.exceptions.ConnectTimeout("connect"),
            requests.exceptions.ReadTimeout("read"),
        ],
    )
    def test_retries_then_succeeds(self, mock_post, exc, client):
        mock_post.side_effect = [exc, _mock_response(text="<done/>")]
        assert client.send(_document()) == "<done/>"
        assert mock_post.call_count == 2

    @patch("verifactu.services.aeat_client.post")
    def test_exhausted_is_transport_error(self, mock_post, client):
        mock_post.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(TransportError, match="unreachable"):
            client.send(_document())
        assert mock_post.call_count == 3

    @patch("verifactu.services.aeat_client.post")
    def test_retries_5xx_without_fault(self, mock_post, client):
        mock_post.side_effect = [
            _mock_response(ok=False, status_code=503, text="Service Unavailable"),
            _mock_response(text="<done/>"),
        ]
        assert client.send(_document()) == "<done/>"
        assert mock_post.call_count == 2

    @patch("verifactu.services.aeat_client.post")
    def test_5xx_exhausted_is_transport_error(self, mock_post, client):
        mock_post.return_value = _mock_response(ok=False, status_code=502, text="Bad Gateway")
        with pytest.raises(TransportError, match="502"):
            client.send(_document())
        assert mock_post.call_count == 3

    @patch("verifactu.services.aeat_client.post")
    def test_fault_on_500_returned_without_retry(self, mock_post, client, soap_fault):
        mock_post.return_value = _mock_response(ok=False, status_code=500, text=soap_fault)
        assert client.send(_document()) == soap_fault
        assert mock_post.call_count == 1

    @patch("verifactu.services.aeat_client.post")
    def test_4xx_is_protocol_error(self, mock_post, client):
        mock_post.return_value = _mock_response(ok=False, status_code=403, text="Forbidden")
        with pytest.raises(ProtocolError, match="403") as exc_info:
            client.send(_document())
        assert exc_info.value.code == "403"
        assert exc_info.value.response == "Forbidden"
        assert mock_post.call_count == 1

    @patch("verifactu.services.aeat_client.post")
    def test_truncates_body(self, mock_post, client):
        mock_post.return_value = _mock_response(ok=False, status_code=400, text="x" * 1000)
        with pytest.raises(ProtocolError) as exc_info:
            client.send(_document())
        assert "x" * 500 in exc_info.value.message
        assert "x" * 501 not in exc_info.value.message

    @patch("verifactu.services.aeat_client.post")
    def test_certificate_problem_is_transport_error(self, mock_post, client):
        mock_post.side_effect = ValueError("Could not deserialize PKCS12 data")
        with pytest.raises(TransportError, match="certificate"):
            client.send(_document())
        assert mock_post.call_count == 1


class TestOverallTimeout:
    @patch("verifactu.services.aeat_client.post")
    def test_joins_streamed_chunks(self, mock_post, client):
        resp = _mock_response()
        resp.iter_content.return_value = [b"<do", b"ne/>"]
        mock_post.return_value = resp
        assert client.send(_document()) == "<done/>"
        resp.close.assert_called_once()

    @patch("verifactu.services.aeat_client.time.monotonic")
    @patch("verifactu.services.aeat_client.post")
    def test_slow_body_times_out_and_retries(self, mock_post, mock_clock):
        mock_clock.side_effect = itertools.count(0.0, 50.0)
        resp = _mock_response()
        resp.iter_content.return_value = [b"<do", b"ne/>"]
        mock_post.return_value = resp
        client = AeatClient("/cert.pfx", overall_timeout=60, policy=NO_WAIT)
        with pytest.raises(TransportError, match="overall timeout"):
            client.send(_document())
        assert mock_post.call_count == 3
        assert resp.close.call_count == 3

    def test_default_deadline(self, client):
        assert client.overall_timeout == 120


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("VERIFACTU_CERT_PATH", "/env/cert.pfx")
        monkeypatch.setenv("VERIFACTU_CERT_PASSWORD", "secret")
        monkeypatch.setenv("VERIFACTU_PRODUCTION", "true")
        client = AeatClient.from_env()
        assert client.cert_path == "/env/cert.pfx"
        assert client.cert_password == "secret"
        assert client.production is True

    def test_missing_cert_path(self, monkeypatch):
        monkeypatch.delenv("VERIFACTU_CERT_PATH", raising=False)
        with pytest.raises(KeyError):
            AeatClient.from_env()


class TestCheckConnectivity:
    @patch("verifactu.services.aeat_client.get")
    def test_any_status_is_ok(self, mock_get, client):
        mock_get.return_value = _mock_response(ok=False, status_code=405)
        client.check_connectivity()
        _, kwargs = mock_get.call_args
        assert kwargs["pkcs12_filename"] == "/cert.pfx"

    @patch("verifactu.services.aeat_client.get")
    def test_unreachable(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(TransportError, match="unreachable"):
            client.check_connectivity()
        assert mock_get.call_count == 2
