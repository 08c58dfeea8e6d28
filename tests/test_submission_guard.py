import pytest

from utils.db import BackendError
from utils.market_tracking.fragments import SubmissionGuard, _run_submission


@pytest.fixture
def guard():
    return SubmissionGuard('doctor_form', storage={})


def test_click_queues_and_disables_until_the_next_run_submits(guard):
    assert not guard.processing

    assert guard.queue({'name': 'Dr. Adel'})
    # the rerun after the click renders the submit button disabled
    assert guard.processing
    assert not guard.queue({'name': 'Dr. Adel'})

    submitted = []
    result = guard.run(lambda payload: submitted.append(payload) or 'saved')

    assert result == 'saved'
    assert submitted == [{'name': 'Dr. Adel'}]
    assert not guard.processing
    assert guard.payload == {}


def test_run_without_a_queued_click_does_nothing(guard):
    submitted = []

    assert guard.run(submitted.append) is None
    assert submitted == []


def test_flag_is_cleared_when_submit_raises(guard):
    def submit(payload):
        raise KeyError('doctor_id')

    guard.queue({'name': 'Dr. Adel'})
    with pytest.raises(KeyError):
        guard.run(submit)

    assert not guard.processing
    assert guard.queue({'name': 'Dr. Adel'})


@pytest.mark.parametrize('error', [
    BackendError('insert doctor', 'connection lost'),
    ValueError('bad units'),
    KeyError('account_id'),
])
def test_failed_submission_is_reported_not_raised(guard, error):
    def submit(payload):
        raise error

    guard.queue({'name': 'Dr. Adel'})

    assert _run_submission(guard, submit) is None
    assert not guard.processing
