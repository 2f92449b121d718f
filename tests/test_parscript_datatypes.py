import threading

import pytest

from parscript.parscript_datatypes import (
    NULL, RNull, RVector, ROpaque, TaskProgress, SimpleTaskResult, LocalSpace,
)


def test_null_is_a_singleton():
    assert RNull() is NULL
    assert len(NULL) == 0


def test_rvector_validates_type_and_names():
    with pytest.raises(ValueError):
        RVector("complex", [1])
    with pytest.raises(ValueError):
        RVector("double", [1.0, 2.0], names=["a"])


def test_rvector_equality_includes_names():
    assert RVector("integer", [1]) == RVector("integer", [1])
    assert RVector("integer", [1], names=["a"]) != RVector("integer", [1])
    assert RVector("integer", [1]) != RVector("double", [1])
    assert ROpaque("closure") == ROpaque("closure")


def test_task_progress_is_shared_between_threads():
    progress = TaskProgress()

    def worker(n):
        progress.set(n)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert progress.get() in range(10)


def test_simple_task_result_reraises_its_failure():
    assert SimpleTaskResult("t1", 5).value() == 5
    failed = SimpleTaskResult("t2", exception=ValueError("no value"))
    with pytest.raises(ValueError):
        failed.value()
    assert failed.task_name == "t2"


def test_local_space_uri(tmp_path):
    assert LocalSpace(tmp_path).real_uri == tmp_path.absolute().as_uri()
