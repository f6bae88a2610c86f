import os
import json
import asyncio

from asyfileserver.common.listcache import ListCache
from asyfileserver.common.pathmap import PathMap
from asyfileserver.serve import etag, parse_range, DEFAULT_CACHE_CONTROL, INTERNAL_CSP
from asyfileserver.test.httpclient import serving, client_for, raw_exchange


def run(coro):
	return asyncio.run(coro)

def get(root, target, headers = None, method = 'GET', **serve_kwargs):
	async def _get():
		async with serving(root, **serve_kwargs) as (server, _):
			async with client_for(server) as client:
				return await client.request(method, target, headers=headers)
	return run(_get())


def test_parse_range():
	assert parse_range('bytes=0-4', 11) == (0, 4)
	assert parse_range('bytes=5-', 11) == (5, 10)
	assert parse_range('bytes=0-', 11) == (0, 10)
	# missing start: end is the number of bytes from the end
	assert parse_range('bytes=-5', 11) == (5, 10)
	assert parse_range('bytes=4-2', 11) is None
	assert parse_range('bytes=0-0', 11) is None
	assert parse_range('bytes=0-11', 11) is None
	assert parse_range('bytes=-11', 11) is None
	assert parse_range('bytes=abc', 11) is None

def test_etag_format(root):
	st = os.stat(root / 'a.txt')
	assert etag(st) == '"%x-%x"' % (st.st_mtime_ns // 1000000, 11)

def test_get_file(root):
	res = get(root, '/a.txt')
	assert res.status_code == 200
	assert res.body == b'hello world'
	assert res.headers['content-length'] == '11'
	assert res.headers['content-type'] == 'text/plain; charset=utf8'
	assert res.headers['accept-ranges'] == 'bytes'
	assert res.headers['cache-control'] == DEFAULT_CACHE_CONTROL
	assert res.headers['etag'] == etag(os.stat(root / 'a.txt'))
	assert res.headers['last-modified'] == str(os.stat(root / 'a.txt').st_mtime_ns // 1000000)
	assert 'content-disposition' not in res.headers
	assert 'content-security-policy' not in res.headers

def test_metadata_is_stable(root):
	async def _test():
		async with serving(root) as (server, _):
			async with client_for(server) as client:
				first = await client.request('GET', '/a.txt')
				second = await client.request('GET', '/a.txt')
		return first, second
	first, second = run(_test())
	assert first.headers['etag'] == second.headers['etag']
	assert first.headers['last-modified'] == second.headers['last-modified']

def test_range_request(root):
	res = get(root, '/a.txt', headers={'Range' : 'bytes=0-4'})
	assert res.status_code == 206
	assert res.body == b'hello'
	assert res.headers['content-range'] == 'bytes 0-4/11'
	assert res.headers['content-length'] == '5'

def test_ranges_reassemble_the_file(root):
	async def _test():
		async with serving(root) as (server, _):
			async with client_for(server) as client:
				full = await client.request('GET', '/a.txt')
				parts = []
				for header in ['bytes=0-3', 'bytes=4-7', 'bytes=8-']:
					res = await client.request('GET', '/a.txt', headers={'Range' : header})
					assert res.status_code == 206
					parts.append(res.body)
		return full.body, b''.join(parts)
	full, joined = run(_test())
	assert joined == full

def test_invalid_ranges(root):
	async def _test():
		results = []
		async with serving(root) as (server, _):
			async with client_for(server) as client:
				for header in ['bytes=5-2', 'bytes=3-3', 'bytes=0-11', 'bytes=20-']:
					results.append(await client.request('GET', '/a.txt', headers={'Range' : header}))
		return results
	for res in run(_test()):
		assert res.status_code == 416
		assert res.headers['content-range'] == 'bytes */11'
		assert res.body == b''

def test_missing_file(root):
	res = get(root, '/missing.txt')
	assert res.status_code == 404

def test_conditional_get(root):
	tag = etag(os.stat(root / 'a.txt'))
	res = get(root, '/a.txt', headers={'If-None-Match' : tag})
	assert res.status_code == 304
	assert res.body == b''
	assert 'etag' not in res.headers

	res = get(root, '/a.txt', headers={'If-None-Match' : '"nope"'})
	assert res.status_code == 200

def test_numeric_last_modified(root):
	mtime = os.stat(root / 'a.txt').st_mtime_ns // 1000000
	assert get(root, '/a.txt', headers={'Last-Modified' : str(mtime + 1000)}).status_code == 304
	assert get(root, '/a.txt', headers={'Last-Modified' : str(mtime)}).status_code == 200
	assert get(root, '/a.txt', headers={'Last-Modified' : 'Wed, 21 Oct 2015 07:28:00 GMT'}).status_code == 200

def test_head(root):
	res = get(root, '/a.txt', method='HEAD')
	assert res.status_code == 200
	assert res.headers['content-length'] == '11'
	assert res.body == b''

	res = get(root, '/a.txt', method='HEAD', headers={'Range' : 'bytes=0-4'})
	assert res.status_code == 206
	assert res.body == b''

def test_empty_file(root):
	res = get(root, '/empty.txt')
	assert res.status_code == 204
	assert res.body == b''
	assert 'etag' in res.headers

def test_folder_and_hidden_files(root):
	assert get(root, '/sub').status_code == 400
	assert get(root, '/sub/').status_code == 404
	assert get(root, '/.secret').status_code == 404
	assert get(root, '/sub/b.txt').body == b'bbb'

def test_unknown_extension_is_plain_text(root, caplog):
	res = get(root, '/data.unknownext')
	assert res.status_code == 200
	assert res.headers['content-type'] == 'text/plain; charset=utf8'
	assert any('.unknownext' in r.getMessage() for r in caplog.records)

def test_download_disposition(root):
	(root / 'my file (1).txt').write_bytes(b'x')
	res = get(root, '/a.txt?d=1')
	assert res.headers['content-disposition'] == 'attachment; filename="a.txt"'
	res = get(root, '/my%20file%20(1).txt?download=true')
	assert res.headers['content-disposition'] == 'attachment; filename="my%20file%20(1).txt"'

def test_traversal_stays_in_root(root):
	for target in ['/../outside.txt', '/..%2foutside.txt', '/%2e%2e/outside.txt', '/sub/..%5c..%5coutside.txt']:
		res = get(root, target)
		assert res.status_code == 404, target
		assert b'never' not in res.body

def test_percent_encoded_names(root):
	(root / 'with space.txt').write_bytes(b'spaced')
	assert get(root, '/with%20space.txt').body == b'spaced'

def test_plus_in_pathname_is_a_space(root):
	(root / 'my file.txt').write_bytes(b'plus')
	assert get(root, '/my+file.txt').body == b'plus'
	assert get(root, '/my%2Bfile.txt').body == b'plus'

def test_fs_sanitize(root):
	(root / 'a-b.txt').write_bytes(b'sanitized')
	assert get(root, '/a%3Ab.txt').body == b'sanitized'
	assert get(root, '/a%00.txt').status_code == 404

def test_path_map_alias(root):
	path_map = PathMap.from_list(['/alias.txt', '/a.txt', '/docs', '/sub'])
	assert get(root, '/alias.txt', path_map=path_map).body == b'hello world'
	res = get(root, '/api?action=list&l=/docs', path_map=path_map)
	assert json.loads(res.body) == [{'type' : 'file', 'value' : '/docs/b.txt'}]

def test_not_implemented_method(root):
	res = get(root, '/a.txt', method='DELETE')
	assert res.status_code == 501

def test_asterisk_target(root):
	async def _test():
		async with serving(root) as (server, _):
			host, port = server.get_address()
			return await raw_exchange(host, port, b'OPTIONS * HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n')
	assert run(_test()).startswith(b'HTTP/1.1 501 ')

def test_unknown_api_action(root):
	assert get(root, '/api?action=delete').status_code == 400
	assert get(root, '/api').status_code == 400

def test_internal_www(root, tmp_path):
	www = tmp_path / 'www'
	(www / 'lib').mkdir(parents=True)
	(www / 'index.html').write_bytes(b'<html></html>')
	(www / 'lib' / 'app.js').write_bytes(b'js')
	res = get(root, '/', www_dir=str(www))
	assert res.body == b'<html></html>'
	assert res.headers['content-security-policy'] == INTERNAL_CSP
	assert res.headers['cache-control'] == 'no-cache'
	assert res.headers['content-type'] == 'text/html; charset=utf8'

	res = get(root, '/_lib_/app.js', www_dir=str(www))
	assert res.body == b'js'
	assert 'content-security-policy' not in res.headers
	assert get(root, '/_lib_/../index.html', www_dir=str(www)).status_code == 200
	assert get(root, '/a.txt', www_dir=str(www)).headers['cache-control'] == DEFAULT_CACHE_CONTROL


## listing

def test_list(root):
	res = get(root, '/api?action=list&l=/')
	assert res.status_code == 200
	assert res.headers['content-type'] == 'application/json'
	assert json.loads(res.body) == [
		{'type' : 'file', 'value' : '/a.txt'},
		{'type' : 'file', 'value' : '/data.unknownext'},
		{'type' : 'file', 'value' : '/empty.txt'},
		{'type' : 'folder', 'value' : '/sub/'},
	]
	res = get(root, '/api?action=get-list&list=/sub')
	assert json.loads(res.body) == [{'type' : 'file', 'value' : '/sub/b.txt'}]
	res = get(root, '/api?action=list&p=sub/')
	assert json.loads(res.body) == [{'type' : 'file', 'value' : 'sub/b.txt'}]

def test_list_errors(root):
	assert get(root, '/api?action=list').status_code == 400
	assert get(root, '/api?action=list&l=').status_code == 400
	assert get(root, '/api?action=list&l=/missing').status_code == 404
	assert get(root, '/api?action=list&l=/a.txt').status_code == 404
	assert get(root, '/api?action=list&l=/', method='PUT').status_code == 405

class FakeClock:
	def __init__(self):
		self.now = 0.0

	def __call__(self):
		return self.now

def test_list_is_cached(root):
	clock = FakeClock()
	cache = ListCache(clock=clock)

	async def _test():
		async with serving(root, list_cache=cache) as (server, _):
			async with client_for(server) as client:
				first = await client.request('GET', '/api?action=list&l=/sub')
				(root / 'sub' / 'new.txt').write_bytes(b'new')
				second = await client.request('GET', '/api?action=list&l=/sub')
				clock.now += 11
				third = await client.request('GET', '/api?action=list&l=/sub')
		return first, second, third

	first, second, third = run(_test())
	assert first.body == second.body
	assert json.loads(third.body) == [
		{'type' : 'file', 'value' : '/sub/b.txt'},
		{'type' : 'file', 'value' : '/sub/new.txt'},
	]


## upload

def test_upload_create_and_replace(root):
	async def _test():
		async with serving(root) as (server, _):
			async with client_for(server) as client:
				created = await client.request('PUT', '/api?action=upload&p=/new.txt', body=b'first')
				first = await client.request('GET', '/new.txt')
				replaced = await client.request('PUT', '/api?action=upload&path=/new.txt', body=b'second!')
				second = await client.request('GET', '/new.txt')
		return created, first, replaced, second

	created, first, replaced, second = run(_test())
	assert created.status_code == 201
	assert created.headers['content-location'] == '/new.txt'
	assert created.body == b'Created /new.txt'
	assert first.body == b'first'
	assert replaced.status_code == 200
	assert replaced.body == b'Modified /new.txt'
	assert second.body == b'second!'

def test_upload_extension_from_content_type(root):
	async def _test():
		async with serving(root) as (server, _):
			async with client_for(server) as client:
				res = await client.request('PUT', '/api?action=upload&p=/picture', headers={'Content-Type' : 'image/png'}, body=b'\x89PNG')
				# same connection, the previous upload is finished once this is answered
				await client.request('GET', '/a.txt')
		return res

	res = run(_test())
	assert res.status_code == 201
	assert res.headers['content-location'] == '/picture.png'
	assert (root / 'picture.png').read_bytes() == b'\x89PNG'

def test_upload_does_not_create_folders(root):
	async def _test():
		results = []
		async with serving(root) as (server, _):
			async with client_for(server) as client:
				for target in ['/a/b/c.txt', '/sub/x.txt', '/missing/x.txt']:
					results.append(await client.request('PUT', '/api?action=upload&p=%s' % target, body=b'data'))
		return results

	for res in run(_test()):
		assert res.status_code == 403
		assert res.body == b'You DO NOT have the permission to create folders'
	assert not (root / 'a').exists()
	assert not (root / 'sub' / 'x.txt').exists()

def test_upload_over_folder(root):
	res = get(root, '/api?action=upload&p=/sub', method='PUT')
	assert res.status_code == 403
	assert res.body == b'A directory entry already exists.'

def test_upload_errors(root):
	assert get(root, '/api?action=upload', method='PUT').status_code == 400
	assert get(root, '/api?action=upload&p=/x.txt').status_code == 405
	assert not (root / 'x.txt').exists()

def test_upload_stays_in_root(root, tmp_path):
	res = get(root, '/api?action=upload&p=../evil.txt', method='PUT')
	assert res.status_code in (201, 403)
	assert not (tmp_path / 'evil.txt').exists()

def test_upload_cannot_replace_internal_page(root, tmp_path):
	www = tmp_path / 'www'
	www.mkdir()
	(www / 'index.html').write_bytes(b'<html></html>')
	res = get(root, '/api?action=upload&p=/index.html', method='PUT', www_dir=str(www))
	assert res.status_code == 403
	assert (www / 'index.html').read_bytes() == b'<html></html>'
