"""
Signing backends: the engine that turns request documents into credentials.

Two interchangeable implementations exist. ``CfsslSigningBackend`` drives the
cfssl/cfssljson binaries and openssl for PKCS#12 export.
``CryptographySigningBackend`` does the same work in-process with the
``cryptography`` library.
"""
import ipaddress
import logging
import os
import subprocess
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..models.errors import SigningError, SigningTimeoutError, ToolingUnavailableError
from ..models.issuance import CertificatePair, CredentialPaths, RequestDocument
from ..models.profiles import DEFAULT_EXPIRY, CertificateRequest, KeySpec, SigningPolicy, parse_duration


class SigningBackend:
    """Interface for signing and bundling credentials."""

    def init_ca(self, request_doc: RequestDocument) -> CertificatePair:
        """Self-sign a root CA from its request."""
        raise NotImplementedError

    def sign(self, request_doc: RequestDocument, profile: str,
             ca_paths: CredentialPaths) -> CertificatePair:
        """Generate a key and certificate for a request, signed by the CA."""
        raise NotImplementedError

    def bundle(self, pair: CertificatePair, friendly_name: str,
               password: bytes = b"") -> bytes:
        """Package a certificate and key into a PKCS#12 container."""
        raise NotImplementedError


class CfsslSigningBackend(SigningBackend):
    """Backend that shells out to cfssl, cfssljson and openssl."""

    def __init__(self, cfssl_path: str, cfssljson_path: str, policy_path,
                 openssl_path: Optional[str] = None, timeout: int = 120):
        """
        Args:
            cfssl_path: Signing engine executable
            cfssljson_path: Engine output splitter executable
            policy_path: Signing policy document passed as ``-config``
            openssl_path: openssl executable for PKCS#12 export (optional)
            timeout: Seconds before an external call is abandoned
        """
        self.cfssl_path = cfssl_path
        self.cfssljson_path = cfssljson_path
        self.openssl_path = openssl_path
        self.policy_path = Path(policy_path)
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def _run(self, args: List[str], input: Optional[bytes] = None) -> subprocess.CompletedProcess:
        """Run one external command, translating failures to signing errors."""
        tool = os.path.basename(args[0])
        self.logger.debug(f"Running {' '.join(str(a) for a in args)}")
        try:
            result = subprocess.run(
                [str(a) for a in args],
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise SigningTimeoutError(
                f"{tool} did not finish within {self.timeout} seconds"
            ) from e
        except FileNotFoundError as e:
            raise ToolingUnavailableError(f"{tool} executable not found: {args[0]}") from e

        if result.returncode != 0:
            raise SigningError(
                f"{tool} exited with status {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr.decode(errors="replace"),
            )
        return result

    def _split(self, gencert_output: bytes) -> CertificatePair:
        """Split the engine's JSON output into PEM files and read them back."""
        with tempfile.TemporaryDirectory() as tmp:
            base = os.path.join(tmp, "out")
            self._run([self.cfssljson_path, "-bare", base], input=gencert_output)
            try:
                with open(f"{base}.pem", 'rb') as f:
                    cert_pem = f.read()
                with open(f"{base}-key.pem", 'rb') as f:
                    key_pem = f.read()
            except FileNotFoundError as e:
                raise SigningError(f"cfssljson produced no credential: {e}") from e

        try:
            return CertificatePair(cert_pem=cert_pem, key_pem=key_pem)
        except ValueError as e:
            raise SigningError(f"cfssljson produced an unusable credential: {e}") from e

    def init_ca(self, request_doc: RequestDocument) -> CertificatePair:
        result = self._run([self.cfssl_path, "gencert", "-initca", request_doc.path])
        return self._split(result.stdout)

    def sign(self, request_doc: RequestDocument, profile: str,
             ca_paths: CredentialPaths) -> CertificatePair:
        result = self._run([
            self.cfssl_path, "gencert",
            f"-ca={ca_paths.cert_path}",
            f"-ca-key={ca_paths.key_path}",
            f"-config={self.policy_path}",
            f"-profile={profile}",
            request_doc.path,
        ])
        return self._split(result.stdout)

    def bundle(self, pair: CertificatePair, friendly_name: str,
               password: bytes = b"") -> bytes:
        if not self.openssl_path:
            raise ToolingUnavailableError("openssl is required to export PKCS#12 bundles")

        with tempfile.TemporaryDirectory() as tmp:
            cert_file = os.path.join(tmp, "cert.pem")
            key_file = os.path.join(tmp, "key.pem")
            out_file = os.path.join(tmp, "bundle.p12")

            with open(cert_file, 'wb') as f:
                f.write(pair.cert_pem)
            with open(os.open(key_file, os.O_WRONLY | os.O_CREAT, 0o600), 'wb') as f:
                f.write(pair.key_pem)

            self._run([
                self.openssl_path, "pkcs12", "-export",
                "-in", cert_file,
                "-inkey", key_file,
                "-out", out_file,
                "-passout", f"pass:{password.decode()}",
                "-name", friendly_name,
            ])

            with open(out_file, 'rb') as f:
                return f.read()


# Usage names accepted in signing policies
KEY_USAGES = {
    "signing": "digital_signature",
    "digital signature": "digital_signature",
    "content commitment": "content_commitment",
    "key encipherment": "key_encipherment",
    "data encipherment": "data_encipherment",
    "key agreement": "key_agreement",
    "cert sign": "key_cert_sign",
    "crl sign": "crl_sign",
}

EXTENDED_KEY_USAGES = {
    "server auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "code signing": ExtendedKeyUsageOID.CODE_SIGNING,
    "email protection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timestamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "ocsp signing": ExtendedKeyUsageOID.OCSP_SIGNING,
}

NAME_FIELDS = {
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "email": NameOID.EMAIL_ADDRESS,
}

EC_CURVES = {
    256: ec.SECP256R1,
    384: ec.SECP384R1,
    521: ec.SECP521R1,
}


class CryptographySigningBackend(SigningBackend):
    """In-process backend built on the ``cryptography`` library."""

    def __init__(self, policy: SigningPolicy, ca_expiry: str = DEFAULT_EXPIRY):
        self.policy = policy
        self.ca_expiry = parse_duration(ca_expiry)
        self.logger = logging.getLogger(__name__)

    def _generate_key(self, spec: KeySpec):
        if spec.algo == "rsa":
            return rsa.generate_private_key(public_exponent=65537, key_size=spec.size)
        return ec.generate_private_key(EC_CURVES[spec.size]())

    def _subject(self, request: CertificateRequest) -> x509.Name:
        attributes = []
        for entry in request.names:
            for key, oid in NAME_FIELDS.items():
                if entry.get(key):
                    attributes.append(x509.NameAttribute(oid, entry[key]))
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, request.common_name))
        return x509.Name(attributes)

    def _serialize(self, cert: x509.Certificate, key) -> CertificatePair:
        # Same PEM flavours cfssljson writes: PKCS#1 for RSA, SEC1 for EC
        return CertificatePair(
            cert_pem=cert.public_bytes(serialization.Encoding.PEM),
            key_pem=key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )

    def _key_usage(self, usages: List[str]) -> x509.KeyUsage:
        flags = {name: False for name in set(KEY_USAGES.values())}
        for usage in usages:
            if usage in KEY_USAGES:
                flags[KEY_USAGES[usage]] = True
        return x509.KeyUsage(
            digital_signature=flags["digital_signature"],
            content_commitment=flags["content_commitment"],
            key_encipherment=flags["key_encipherment"],
            data_encipherment=flags["data_encipherment"],
            key_agreement=flags["key_agreement"],
            key_cert_sign=flags["key_cert_sign"],
            crl_sign=flags["crl_sign"],
            encipher_only=False,
            decipher_only=False,
        )

    def _san(self, hosts: List[str]) -> x509.SubjectAlternativeName:
        names = []
        for host in hosts:
            try:
                names.append(x509.IPAddress(ipaddress.ip_address(host)))
            except ValueError:
                if "@" in host:
                    names.append(x509.RFC822Name(host))
                else:
                    names.append(x509.DNSName(host))
        return x509.SubjectAlternativeName(names)

    def init_ca(self, request_doc: RequestDocument) -> CertificatePair:
        request = request_doc.request
        try:
            key = self._generate_key(request.key)
            subject = self._subject(request)
            now = datetime.now(timezone.utc)

            builder = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - timedelta(minutes=5))
                .not_valid_after(now + self.ca_expiry)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(
                    self._key_usage(["cert sign", "crl sign", "digital signature"]),
                    critical=True,
                )
                .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            )
            if request.san_hosts:
                builder = builder.add_extension(self._san(request.san_hosts), critical=False)

            cert = builder.sign(private_key=key, algorithm=hashes.SHA256())
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to self-sign CA {request.common_name}: {e}") from e

        return self._serialize(cert, key)

    def _load_ca(self, ca_paths: CredentialPaths):
        try:
            ca_cert = x509.load_pem_x509_certificate(ca_paths.cert_path.read_bytes())
            ca_key = serialization.load_pem_private_key(ca_paths.key_path.read_bytes(), password=None)
        except FileNotFoundError as e:
            raise SigningError(f"CA material not found: {e.filename}") from e
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to load CA material: {e}") from e
        return ca_cert, ca_key

    def sign(self, request_doc: RequestDocument, profile: str,
             ca_paths: CredentialPaths) -> CertificatePair:
        request = request_doc.request
        try:
            signing_profile = self.policy.get_profile(profile)
        except ValueError as e:
            raise SigningError(str(e)) from e

        unknown = [
            u for u in signing_profile.usages
            if u not in KEY_USAGES and u not in EXTENDED_KEY_USAGES
        ]
        if unknown:
            raise SigningError(f"Unsupported usages in profile {profile}: {', '.join(unknown)}")

        ca_cert, ca_key = self._load_ca(ca_paths)

        try:
            key = self._generate_key(request.key)
            now = datetime.now(timezone.utc)

            builder = (
                x509.CertificateBuilder()
                .subject_name(self._subject(request))
                .issuer_name(ca_cert.subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - timedelta(minutes=5))
                .not_valid_after(now + signing_profile.expiry_delta)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(self._key_usage(signing_profile.usages), critical=True)
                .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                    critical=False,
                )
            )

            extended = [EXTENDED_KEY_USAGES[u] for u in signing_profile.usages if u in EXTENDED_KEY_USAGES]
            if extended:
                builder = builder.add_extension(x509.ExtendedKeyUsage(extended), critical=False)

            if request.san_hosts:
                builder = builder.add_extension(self._san(request.san_hosts), critical=False)

            cert = builder.sign(private_key=ca_key, algorithm=hashes.SHA256())
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to sign {request.common_name} with profile {profile}: {e}") from e

        return self._serialize(cert, key)

    def bundle(self, pair: CertificatePair, friendly_name: str,
               password: bytes = b"") -> bytes:
        try:
            cert = x509.load_pem_x509_certificate(pair.cert_pem)
            key = serialization.load_pem_private_key(pair.key_pem, password=None)
            encryption = (
                serialization.BestAvailableEncryption(password)
                if password else serialization.NoEncryption()
            )
            return pkcs12.serialize_key_and_certificates(
                name=friendly_name.encode(),
                key=key,
                cert=cert,
                cas=None,
                encryption_algorithm=encryption,
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to export PKCS#12 bundle: {e}") from e
