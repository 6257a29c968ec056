# vehicle_backup/common/truststore_context.py
"""
SSL context built from the operating system trust store.

Fleet backends such as my.geotab.com are often reached from corporate
networks where a TLS-inspecting proxy re-signs traffic with a private root
CA. That CA lives in the OS certificate store but not in certifi, so the
default httpx verification fails. Setting `connection.use_truststore: true`
routes verification through `truststore` instead.

`truststore` is imported lazily so it is only required when that option is
enabled.
"""

import ssl
from ssl import SSLContext

__all__: list[str] = ['build_truststore_ssl_context']


def build_truststore_ssl_context() -> SSLContext:
    """
    Create a client SSLContext that verifies against the OS trust store.

    Returns:
        SSLContext suitable for the `verify=` argument of httpx clients.

    Raises:
        RuntimeError: If truststore is not installed.
    """
    try:
        import truststore  # noqa: PLC0415
    except ImportError as import_error:
        raise RuntimeError(
            'truststore is required when connection.use_truststore is enabled; '
            'install it with: pip install truststore'
        ) from import_error

    return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
