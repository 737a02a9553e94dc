from r2uploader.errors import (
    DEFAULT_ERROR_CODE,
    ConfigError,
    ProviderError,
    R2UploaderError,
    TransientNetworkError,
    error_status,
)
from r2uploader.transfer import Error


def test_default_codes():
    assert ConfigError("x").code == "ConfigError"
    assert TransientNetworkError("x").code == "TransientNetworkError"
    assert R2UploaderError("x").code == DEFAULT_ERROR_CODE


def test_provider_error_keeps_server_code():
    err = ProviderError("denied", code="AccessDenied", status=403, details={"key": "a"})
    assert isinstance(err, R2UploaderError)
    assert err.status == 403
    assert err.details == {"key": "a"}
    assert err.to_status() == Error(message="denied", code="AccessDenied")


def test_foreign_exception_maps_to_upload_error():
    assert error_status(OSError("disk gone")) == Error(
        message="disk gone", code="UPLOAD_ERROR"
    )
    assert error_status(RuntimeError()).message == "RuntimeError"
