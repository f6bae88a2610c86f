import re
import hmac
import base64
import logging
from typing import List

from asyfileserver.protocol.app import Context

logger = logging.getLogger('asyfileserver.auth')

REALM = 'Basic realm="restricted"'
WRONG_CREDENTIALS = 'Wrong username or password'


def compile_rules(rules:List[str]):
	return [re.compile(rule, re.IGNORECASE) for rule in rules]

def basic_auth(username:str, password:str, rules:List[str]):
	"""Returns a handler asking for HTTP Basic credentials on every request
	whose decoded pathname or query string matches one of the rules.

	A missing Authorization header is answered with the challenge, a wrong
	one without it so browsers do not pop their login dialog again.
	"""
	patterns = compile_rules(rules)
	expected = ('Basic %s' % base64.b64encode(('%s:%s' % (username, password)).encode('utf-8')).decode('ascii')).encode('latin-1')

	def is_restricted(ctx:Context):
		for pattern in patterns:
			if pattern.search(ctx.state.pathname) is not None:
				return True
			if ctx.state.url.query and pattern.search(ctx.state.url.query) is not None:
				return True
		return False

	async def auth_middleware(ctx:Context, next):
		if is_restricted(ctx) is False:
			return await next()

		authorization = ctx.req.headers.get('authorization')
		if not authorization:
			await ctx.res.write_head(401, {
				'WWW-Authenticate' : REALM,
				'Content-Length' : 0,
			})
			await ctx.res.end()
			return

		if not hmac.compare_digest(authorization.encode('latin-1'), expected):
			logger.info('Wrong credentials from %s for %s' % (ctx.ip, ctx.state.pathname))
			await ctx.res.write_head(401, {
				'Content-Type' : 'text/plain; charset=utf-8',
				'Content-Length' : len(WRONG_CREDENTIALS),
			})
			await ctx.res.end(WRONG_CREDENTIALS)
			return

		return await next()

	return auth_middleware
