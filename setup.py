from setuptools import setup, find_packages
import re

VERSIONFILE="asyfileserver/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))


setup(
	# Application name:
	name="asyfileserver",

	# Version number (initial):
	version=verstr,

	# Packages
	packages=find_packages(),

	# Include additional files into the package
	include_package_data=True,

	zip_safe = True,
	#
	description="Asyncio HTTP/HTTPS file server with range downloads, directory listing and PUT uploads",
	long_description="",

	python_requires='>=3.8',
	classifiers=[
		"Programming Language :: Python :: 3.8",
		"License :: OSI Approved :: MIT License",
		"Operating System :: OS Independent",
	],
	install_requires=[
		'cryptography>=42.0.0',
		'h11>=0.14.0',
	],
	extras_require={
		'test': [
			'pytest',
		],
	},
	entry_points={
		'console_scripts': [
			'asyfileserver = asyfileserver.__main__:main',
		],
	}
)
