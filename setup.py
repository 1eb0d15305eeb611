from setuptools import setup, find_packages
import os

# Read requirements.txt
requirements_file = 'requirements.txt'
install_requires = []
if os.path.exists(requirements_file):
    with open(requirements_file, 'r') as f:
        install_requires = [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name="solana_token_cache_bundle",
    version="0.1.0",
    packages=find_packages(include=['solana_token_cache_bundle', 'solana_token_cache_bundle.*']),
    install_requires=install_requires,
    extras_require={
        'test': ['pytest>=7.0', 'pytest-asyncio>=0.23'],
    },
    author="Effie Choupette",
    author_email="effie_choupette@outlook.com",
    description="Solana token listing cache with DexScreener/Helius enrichment",
    long_description=open('README.md').read() if os.path.exists('README.md') else '',
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    package_data={
        'solana_token_cache_bundle': ['*.yaml', '*.txt'],
    },
    include_package_data=True,
    entry_points={
        'console_scripts': [
            'solana-token-cache=solana_token_cache_bundle.token_cache.__main__:main',
        ],
    },
)
