from pytest_socket import disable_socket, enable_socket


def pytest_runtest_setup(item):
    """
    Runs before every test.
    We disable network access. Every attempt to connect
    (HTTP, DNS, etc) will immediately raise a SocketBlockedError.

    Tests marked `loopback` talk to a MockController on 127.0.0.1
    and get sockets back.
    """
    if item.get_closest_marker("loopback"):
        enable_socket()
    else:
        disable_socket(allow_unix_socket=True)
