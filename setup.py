from setuptools import setup, find_packages
from codecs import open
import os

__author__ = "The anisymm Development Team"

here = os.path.abspath(os.path.dirname(__file__))
package_name = 'anisymm'
package_description = ('ANI symmetry functions with analytical position '
                       'gradients in PyTorch')

# Get the long description from the README file
with open(os.path.join(here, 'README.md'), encoding='utf-8') as fp:
    long_description = fp.read()

# Get version number from the VERSION file
with open(os.path.join(here, package_name, 'VERSION')) as fp:
    version = fp.read().strip()

setup(
    name=package_name,
    version=version,
    description=package_description,
    long_description=long_description,
    long_description_content_type='text/markdown',
    author=__author__,
    license='MIT',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Physics',
        'Topic :: Scientific/Engineering :: Chemistry',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Programming Language :: Python :: 3'
    ],
    keywords=['machine learning potentials', 'atomic environment',
              'symmetry functions'],
    packages=find_packages(exclude=['tests', '*.tests']),
    package_data={package_name: ['VERSION']},
    python_requires='>=3.8',
    install_requires=['numpy>=1.20.1',
                      'torch>=2.0'],
    extras_require={
        'test': ['pytest>=7.0'],
    }
)
