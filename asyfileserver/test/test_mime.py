from asyfileserver.common.mime import MimeTable, MIME_TYPES


def test_content_type():
	table = MimeTable()
	assert table.content_type('.png') == 'image/png'
	assert table.content_type('.PNG') == 'image/png'
	assert table.content_type('.html') == 'text/html'
	assert table.content_type('.nope') is None
	assert table.content_type('') is None

def test_extension_for_ignores_parameters():
	table = MimeTable()
	assert table.extension_for('image/png') == '.png'
	assert table.extension_for('application/json; charset=utf-8') == '.json'
	assert table.extension_for('application/x-nothing') is None
	assert table.extension_for('') is None

def test_extension_for_first_match_wins():
	table = MimeTable()
	assert table.extension_for('text/html') == '.html'

def test_reverse_lookup_is_memoized_per_table():
	table = MimeTable({'.a' : 'x/y'})
	assert table.extension_for('x/y') == '.a'
	assert table.reverse_cache == {'x/y' : '.a'}
	table.types = {}
	assert table.extension_for('x/y') == '.a'
	assert MimeTable().reverse_cache == {}
	assert '.a' not in MIME_TYPES
