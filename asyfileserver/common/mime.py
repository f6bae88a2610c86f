from typing import Dict

MIME_TYPES = {
	'.aac' : 'audio/aac',
	'.avi' : 'video/x-msvideo',
	'.bin' : 'application/octet-stream',
	'.bmp' : 'image/bmp',
	'.bz2' : 'application/x-bzip2',
	'.css' : 'text/css',
	'.csv' : 'text/csv',
	'.doc' : 'application/msword',
	'.docx' : 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
	'.epub' : 'application/epub+zip',
	'.flac' : 'audio/flac',
	'.gif' : 'image/gif',
	'.gz' : 'application/gzip',
	'.html' : 'text/html',
	'.htm' : 'text/html',
	'.ico' : 'image/vnd.microsoft.icon',
	'.jpeg' : 'image/jpeg',
	'.jpg' : 'image/jpeg',
	'.js' : 'text/javascript',
	'.json' : 'application/json',
	'.m4a' : 'audio/mp4',
	'.md' : 'text/markdown',
	'.mjs' : 'text/javascript',
	'.mkv' : 'video/x-matroska',
	'.mov' : 'video/quicktime',
	'.mp3' : 'audio/mpeg',
	'.mp4' : 'video/mp4',
	'.mpeg' : 'video/mpeg',
	'.oga' : 'audio/ogg',
	'.ogv' : 'video/ogg',
	'.ogg' : 'audio/ogg',
	'.otf' : 'font/otf',
	'.pdf' : 'application/pdf',
	'.png' : 'image/png',
	'.ppt' : 'application/vnd.ms-powerpoint',
	'.pptx' : 'application/vnd.openxmlformats-officedocument.presentationml.presentation',
	'.rar' : 'application/vnd.rar',
	'.svg' : 'image/svg+xml',
	'.tar' : 'application/x-tar',
	'.tif' : 'image/tiff',
	'.tiff' : 'image/tiff',
	'.ttf' : 'font/ttf',
	'.txt' : 'text/plain',
	'.wasm' : 'application/wasm',
	'.wav' : 'audio/wav',
	'.weba' : 'audio/webm',
	'.webm' : 'video/webm',
	'.webp' : 'image/webp',
	'.woff' : 'font/woff',
	'.woff2' : 'font/woff2',
	'.xhtml' : 'application/xhtml+xml',
	'.xls' : 'application/vnd.ms-excel',
	'.xlsx' : 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
	'.xml' : 'application/xml',
	'.zip' : 'application/zip',
	'.7z' : 'application/x-7z-compressed',
}

DEFAULT_TYPE = 'text/plain'


class MimeTable:
	"""Extension to content-type lookups, with a memoized reverse lookup."""
	def __init__(self, types:Dict[str, str] = None):
		self.types = types if types is not None else MIME_TYPES
		self.reverse_cache:Dict[str, str] = {}

	def content_type(self, extension:str):
		return self.types.get(extension.lower())

	def extension_for(self, content_type:str):
		content_type = content_type.split(';', 1)[0].strip().lower()
		if content_type == '':
			return None
		if content_type in self.reverse_cache:
			return self.reverse_cache[content_type]
		for ext, ctype in self.types.items():
			if ctype == content_type:
				self.reverse_cache[content_type] = ext
				return ext
		return None
