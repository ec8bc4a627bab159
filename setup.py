"""
Packaging for linesocket. Install with `pip install -e .`, and `pip install -e .[test]` to run the tests.
"""

from setuptools import setup


setup(
    name='linesocket',
    version='0.0.1',
    description='Line oriented TCP client and server endpoints with listener callbacks.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['linesocket', 'linesocket.conduit', 'linesocket.config', 'linesocket.endpoint',
              'linesocket.support'],
    package_data={'linesocket': ['*.cfg'], 'linesocket.config': ['*.cfg']},
    install_requires=['configobj'],
    extras_require={
        'test': ['PyHamcrest', 'timeout-decorator', 'pytest'],
    },
    zip_safe=False,
)
