from setuptools import setup, find_packages

setup(
    name="pydci",
    version="0.1.0",
    packages=find_packages(exclude=["test", "test.*"]),
    install_requires=["numpy", "scipy", "matplotlib"],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.10",
    author="Your Name",
    description="Dynamic Control of Infeasibility for equality constrained nonlinear optimization",
    license="MIT",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License"
    ]
)
