from setuptools import setup, find_packages

setup(
    name='levelforge',
    version='0.1.0',
    author='levelforge contributors',
    description='Decode level model buffers and export them as COLLADA scenes with skeletons and animations',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=['levelforge', 'levelforge.*']),
    install_requires=[
        'numpy>=1.20.0',
        'trimesh>=3.10.0',
    ],
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=4.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'levelforge=levelforge.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Operating System :: OS Independent',
        'Topic :: Multimedia :: Graphics :: 3D Modeling',
    ],
    python_requires='>=3.9',
)
