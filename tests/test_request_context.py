from app.obs.context import (
    RequestContext,
    current_logger,
    current_request_id,
    get_request_context,
    request_scope,
    set_correlation_id,
    set_user_id,
)


def test_no_request_bound():
    assert get_request_context() is None
    assert current_request_id() == ""
    assert set_user_id("u") is None


def test_scope_binds_and_resets(logger):
    ctx = RequestContext(request_id="abc", logger=logger.with_context(RequestContext(request_id="abc")))
    with request_scope(ctx):
        assert get_request_context() is ctx
        assert current_request_id() == "abc"
        assert current_logger().fields["request_id"] == "abc"
    assert get_request_context() is None


def test_current_logger_falls_back_to_default_with_request_id(logger):
    with request_scope(RequestContext(request_id="r-9")):
        assert current_logger(logger).fields["request_id"] == "r-9"
    assert current_logger(logger) is logger


def test_setters_replace_context_and_rederive_logger(logger):
    base = RequestContext(request_id="r-1", logger=logger)
    with request_scope(base):
        set_user_id("user-7")
        updated = set_correlation_id("corr-3")

        assert base.user_id is None
        assert updated.user_id == "user-7"
        assert updated.correlation_id == "corr-3"
        assert updated.logger.fields["user_id"] == "user-7"
        assert updated.logger.fields["correlation_id"] == "corr-3"
        assert "user_id" not in logger.fields
