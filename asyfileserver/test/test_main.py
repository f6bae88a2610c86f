import json
import asyncio

import pytest

from asyfileserver.__main__ import get_parser, get_config, build_app, get_ssl_context
from asyfileserver.accesslog import AccessLog
from asyfileserver.common.exceptions import ConfigError
from asyfileserver.test.httpclient import serving, client_for


def test_command_line_overrides_config_file(root, tmp_path):
	fn = tmp_path / 'config.json'
	fn.write_text(json.dumps({'location' : '/does/not/exist', 'port' : 8000, 'hostname' : '127.0.0.1'}))
	args = get_parser().parse_args([str(root), '--config', str(fn), '--port', '0'])
	config = get_config(args)
	assert config.location == str(root)
	assert config.port == 0
	assert config.hostname == '127.0.0.1'
	assert config.tls is False
	assert config.trust_proxy is False

def test_auth_options(root):
	args = get_parser().parse_args([str(root), '--auth-user', 'admin', '--auth-pass', 'pw', '--auth-rule', '^/sub', '--auth-rule', 'secret'])
	config = get_config(args)
	assert config.auth_enabled is True
	assert config.auth_rules == ['^/sub', 'secret']

	args = get_parser().parse_args([str(root), '--auth-rule', '^/sub'])
	with pytest.raises(ConfigError):
		get_config(args)

def test_invalid_location(tmp_path):
	with pytest.raises(ConfigError):
		get_config(get_parser().parse_args([str(tmp_path / 'missing')]))

def test_no_ssl_context_without_tls(root):
	config = get_config(get_parser().parse_args([str(root)]))
	assert get_ssl_context(config) is None

def test_wired_app(root, tmp_path):
	(tmp_path / 'map.json').write_text(json.dumps(['/hello', '/a.txt']))
	args = get_parser().parse_args([str(root), '--auth-user', 'admin', '--auth-pass', 'pw', '--auth-rule', '^/sub', '--path-map', str(tmp_path / 'map.json')])
	config = get_config(args)
	accesslog = AccessLog()
	app = build_app(config, accesslog)

	async def _test():
		async with serving(app=app) as (server, _):
			async with client_for(server) as client:
				aliased = await client.request('GET', '/hello')
				restricted = await client.request('GET', '/sub/b.txt')
		return aliased, restricted

	aliased, restricted = asyncio.run(_test())
	assert aliased.body == b'hello world'
	assert restricted.status_code == 401

def test_cert_without_key(root, tmp_path):
	cert = tmp_path / 'server.crt'
	cert.write_text('x')
	args = get_parser().parse_args([str(root), '--tls', '--cert', str(cert)])
	with pytest.raises(ConfigError) as e:
		get_config(args)
	assert 'given together' in e.value.problems[0]
