import os
import ssl
import uuid
import logging
import datetime
import tempfile
import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID

logger = logging.getLogger('asyfileserver.certmanager')

SELFSIGNED_NAMES = ['localhost', '127.0.0.1']


def generate_selfsigned(cn:str = 'localhost', key_exp:int = 65537, key_size:int = 2048, days:int = 365):
	"""Creates a self signed server certificate valid for localhost and 127.0.0.1.
	Returns (cert_pem, key_pem, err)"""
	try:
		logger.debug('Generating self signed certificate for %s' % cn)
		one_day = datetime.timedelta(1, 0, 0)
		now = datetime.datetime.now(datetime.timezone.utc)
		private_key = rsa.generate_private_key(
			public_exponent=key_exp,
			key_size=key_size,
		)
		name = x509.Name([
			x509.NameAttribute(NameOID.COMMON_NAME, cn),
			x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'asyfileserver'),
		])
		builder = x509.CertificateBuilder()
		builder = builder.subject_name(name)
		builder = builder.issuer_name(name)
		builder = builder.not_valid_before(now - one_day)
		builder = builder.not_valid_after(now + datetime.timedelta(days, 0, 0))
		builder = builder.serial_number(int(uuid.uuid4()))
		builder = builder.public_key(private_key.public_key())
		builder = builder.add_extension(
			x509.SubjectAlternativeName([
				x509.DNSName('localhost'),
				x509.IPAddress(ipaddress.ip_address('127.0.0.1')),
			]),
			critical=False,
		)
		builder = builder.add_extension(
			x509.BasicConstraints(ca=False, path_length=None), critical=True,
		)
		builder = builder.add_extension(
			x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False,
		)
		certificate = builder.sign(private_key=private_key, algorithm=hashes.SHA256())

		cert = certificate.public_bytes(encoding=serialization.Encoding.PEM)
		key = private_key.private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.TraditionalOpenSSL,
			encryption_algorithm=serialization.NoEncryption()
		)
		return cert, key, None
	except Exception as e:
		logger.exception('generate_selfsigned')
		return None, None, e

def is_usable(certfile:str, keyfile:str):
	"""True if both files exist and the certificate did not expire yet"""
	if not os.path.isfile(certfile) or not os.path.isfile(keyfile):
		return False
	try:
		with open(certfile, 'rb') as f:
			cert = x509.load_pem_x509_certificate(f.read())
	except (OSError, ValueError) as e:
		logger.debug('Cached certificate %s is not usable: %s' % (certfile, e))
		return False
	return cert.not_valid_after_utc > datetime.datetime.now(datetime.timezone.utc)

def generate_selfsigned_cert(hostname:str = 'localhost', cache_dir:str = None):
	"""Returns (certfile, keyfile) of a self signed certificate, reusing the cached one when still valid"""
	if hostname not in SELFSIGNED_NAMES:
		raise ValueError('Self signed certificate is valid only for hostnames %s' % SELFSIGNED_NAMES)
	if cache_dir is None:
		cache_dir = os.path.join(tempfile.gettempdir(), 'asyfileserver-certs')
	os.makedirs(cache_dir, exist_ok=True)

	certfile = os.path.join(cache_dir, 'server.crt')
	keyfile = os.path.join(cache_dir, 'server.key')
	if is_usable(certfile, keyfile):
		logger.debug('Cache hit for self signed certificate in %s' % cache_dir)
		return certfile, keyfile

	cert, key, err = generate_selfsigned()
	if err is not None:
		raise err

	with open(certfile, 'wb') as f:
		f.write(cert)
	with open(keyfile, 'wb') as f:
		f.write(key)
	os.chmod(keyfile, 0o600)
	logger.info('Generated self signed certificate %s' % certfile)
	return certfile, keyfile

def get_server_ssl_context(certfile:str, keyfile:str):
	ssl_ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
	ssl_ctx.load_cert_chain(certfile, keyfile)
	return ssl_ctx
