import pytest


@pytest.fixture
def root(tmp_path):
	"""Served folder:
	a.txt ("hello world"), empty.txt, .secret, sub/b.txt, data.unknownext
	and a file next to (outside of) the served folder"""
	srv = tmp_path / 'srv'
	srv.mkdir()
	(srv / 'a.txt').write_bytes(b'hello world')
	(srv / 'empty.txt').write_bytes(b'')
	(srv / '.secret').write_bytes(b'top secret')
	(srv / 'data.unknownext').write_bytes(b'0123456789')
	(srv / 'sub').mkdir()
	(srv / 'sub' / 'b.txt').write_bytes(b'bbb')
	(tmp_path / 'outside.txt').write_bytes(b'should never be served')
	return srv
