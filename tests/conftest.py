from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from verifactu.config import SystemConfig
from verifactu.models.chain import ChainLink
from verifactu.models.invoice import Invoice

# --- System fixtures ---


@pytest.fixture
def system_dict() -> dict:
    return {
        "issuer": {"name": "EMPRESA EJEMPLO SL", "tax_id": "89890001K"},
        "system": {
            "name": "verifactu-python",
            "id": "VP",
            "version": "0.1.0",
            "installation_number": "001",
        },
    }


@pytest.fixture
def system(system_dict: dict) -> SystemConfig:
    return SystemConfig.from_dict(system_dict)


# --- Invoice fixtures ---


@pytest.fixture
def invoice_dict() -> dict:
    return {
        "issuer_tax_id": "89890001K",
        "number": "12345678/G33",
        "issue_date": "01-01-2024",
        "type": "F1",
        "description": "Servicios de consultoria",
        "total_tax": "12.35",
        "total_amount": "123.45",
        "recipients": [{"name": "CLIENTE EJEMPLO SA", "tax_id": "A39200019"}],
        "breakdowns": [
            {
                "tax_type": "01",
                "regime_type": "01",
                "operation_type": "S1",
                "base_amount": "111.10",
                "tax_rate": "21",
                "tax_amount": "12.35",
            }
        ],
    }


@pytest.fixture
def invoice(invoice_dict: dict) -> Invoice:
    return Invoice.from_dict(invoice_dict)


@pytest.fixture
def first_link() -> ChainLink:
    return ChainLink.first()


# --- Certificate / PFX fixtures ---


@pytest.fixture(scope="session")
def test_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "Test Certificate"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Org"),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC) - timedelta(days=1))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture(scope="session")
def self_signed_pem(test_key_and_cert):
    key, cert = test_key_and_cert
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    return key_pem, cert_pem


@pytest.fixture
def test_pfx(tmp_path, test_key_and_cert):
    key, cert = test_key_and_cert
    password = b"testpass"
    pfx_data = pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password),
    )
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_data)
    return str(pfx_path), "testpass"


@pytest.fixture
def unencrypted_pfx(tmp_path, test_key_and_cert):
    key, cert = test_key_and_cert
    pfx_data = pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.NoEncryption(),
    )
    pfx_path = tmp_path / "open.pfx"
    pfx_path.write_bytes(pfx_data)
    return str(pfx_path)


# --- Config dir fixture ---


@pytest.fixture
def config_dir(tmp_path, system_dict, monkeypatch):
    import yaml

    cfg = tmp_path / "config"
    cfg.mkdir()
    (cfg / "issuer.yaml").write_text(yaml.dump(system_dict))
    monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(cfg))
    monkeypatch.setenv("VERIFACTU_DATA_DIR", str(tmp_path / "data"))
    return cfg


# --- AEAT responses ---


def aeat_response(
    envio: str = "Correcto",
    registro: str | None = "Correcto",
    csv: str | None = "ABC123XYZ456QWER",
    number: str = "12345678/G33",
    code: str | None = None,
    description: str | None = None,
    envelope_extra: str = "",
    record_tag: str = "RespuestaLinea",
) -> str:
    """Build a RespuestaRegFactuSistemaFacturacion SOAP envelope."""
    line = ""
    if registro is not None:
        line = (
            f"<tikR:{record_tag}>"
            "<tikR:IDFactura>"
            "<tik:IDEmisorFactura>89890001K</tik:IDEmisorFactura>"
            f"<tik:NumSerieFactura>{number}</tik:NumSerieFactura>"
            "<tik:FechaExpedicionFactura>01-01-2024</tik:FechaExpedicionFactura>"
            "</tikR:IDFactura>"
            f"<tikR:EstadoRegistro>{registro}</tikR:EstadoRegistro>"
            + (f"<tikR:CodigoErrorRegistro>{code}</tikR:CodigoErrorRegistro>" if code else "")
            + (
                f"<tikR:DescripcionErrorRegistro>{description}</tikR:DescripcionErrorRegistro>"
                if description
                else ""
            )
            + f"</tikR:{record_tag}>"
        )
    csv_el = f"<tikR:CSV>{csv}</tikR:CSV>" if csv else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">'
        "<env:Header/>"
        "<env:Body>"
        '<tikR:RespuestaRegFactuSistemaFacturacion '
        'xmlns:tikR="https://www2.agenciatributaria.gob.es/static_files/common/internet/dep/'
        'aplicaciones/es/aeat/tike/cont/ws/RespuestaSuministro.xsd" '
        'xmlns:tik="https://www2.agenciatributaria.gob.es/static_files/common/internet/dep/'
        'aplicaciones/es/aeat/tike/cont/ws/SuministroInformacion.xsd">'
        f"{csv_el}"
        "<tikR:TiempoEsperaEnvio>60</tikR:TiempoEsperaEnvio>"
        f"<tikR:EstadoEnvio>{envio}</tikR:EstadoEnvio>"
        f"{envelope_extra}"
        f"{line}"
        "</tikR:RespuestaRegFactuSistemaFacturacion>"
        "</env:Body>"
        "</env:Envelope>"
    )


SOAP_FAULT = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">'
    "<env:Body>"
    "<env:Fault>"
    "<faultcode>env:Client</faultcode>"
    "<faultstring>Codigo[4102].El XML no cumple el esquema.</faultstring>"
    "</env:Fault>"
    "</env:Body>"
    "</env:Envelope>"
)


@pytest.fixture
def make_response():
    return aeat_response


@pytest.fixture
def soap_fault() -> str:
    return SOAP_FAULT
