import os

import pytest

from asyfileserver.common.router import Router, Terminal, REJECT, normalize, join_root


def test_normalize_resolves_parent_segments():
	assert normalize('/a/b/../c') == '/a/c'
	assert normalize('/../../etc/passwd') == '/etc/passwd'
	assert normalize('..\\..\\windows\\win.ini') == '/windows/win.ini'
	assert normalize('//a//./b/') == '/a/b'
	assert normalize('') == '/'

def test_join_root_stays_inside(tmp_path):
	root = str(tmp_path)
	join = join_root(root)
	assert join('/a.txt') == os.path.join(root, 'a.txt')
	for attack in ['/../outside.txt', '../../../etc/passwd', '/sub/../../x', '\\..\\x']:
		result = join(attack)
		assert os.path.commonpath([result, root]) == root

def test_stages_run_in_requested_order():
	router = Router({
		'one' : [lambda x: x + '1'],
		'two' : [lambda x: x + '2', lambda x: x + '3'],
	})
	assert router.route('', 'one', 'two') == '123'
	assert router.route('', 'two', 'one') == '231'
	assert router.route('x') == 'x'

def test_terminal_skips_remaining_stages():
	calls = []
	def record(x):
		calls.append(x)
		return x
	router = Router({
		'first' : [lambda x: Terminal('/fixed') if x == '/' else x, record],
		'second' : [record],
	})
	assert router.route('/', 'first', 'second') == '/fixed'
	assert calls == []
	assert router.route('/a', 'first', 'second') == '/a'
	assert calls == ['/a', '/a']

def test_reject_vetoes_routing():
	router = Router({'filter' : [lambda x: REJECT if x.startswith('.') else x]})
	assert router.route('.hidden', 'filter') is None
	assert router.route('visible', 'filter') == 'visible'

	router.append('filter', lambda x: False)
	assert router.route('visible', 'filter') is None

def test_append_and_prepend():
	router = Router().add_stage('s')
	router.append('s', lambda x: x + 'b')
	router.prepend('s', lambda x: x + 'a')
	router.append('s', lambda x: x + 'c')
	assert router.route('', 's') == 'abc'

def test_unknown_stage():
	with pytest.raises(KeyError):
		Router().route('x', 'nope')

def test_terminal_equality():
	assert Terminal('a') == Terminal('a')
	assert Terminal('a') != Terminal('b')
	assert not REJECT
