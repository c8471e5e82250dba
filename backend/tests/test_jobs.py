from jobs import JobStatus, build_jobs, job_id_for
from session_state import PlacementSelection


def designs():
    return {
        "A": [PlacementSelection("front", 100, 200), PlacementSelection("back", 100, 200)],
        "B": [PlacementSelection("front", 50, 50)],
    }


def test_one_job_per_product_placement_with_stable_ids():
    jobs = build_jobs(designs())

    assert [j.job_id for j in jobs] == ["A_front", "A_back", "B_front"]
    assert all(j.status == JobStatus.PENDING for j in jobs)
    assert job_id_for("A", "front") == "A_front"


def test_rebuilding_never_duplicates_or_resets_rows():
    first = build_jobs(designs())
    first[0].mark(JobStatus.ERROR, "boom")

    second = build_jobs(designs(), existing=first)

    assert [j.job_id for j in second] == [j.job_id for j in first]
    assert second[0] is first[0]
    assert second[0].status == JobStatus.ERROR


def test_duplicate_placements_collapse():
    duplicated = {"A": [PlacementSelection("front", 100, 200), PlacementSelection("front", 100, 200)]}

    assert len(build_jobs(duplicated)) == 1


def test_changed_placement_gets_a_fresh_row():
    first = build_jobs(designs())
    first[2].mark(JobStatus.FAILED)
    changed = designs()
    changed["B"] = [PlacementSelection("front", 80, 80)]

    second = build_jobs(changed, existing=first)

    assert second[2] is not first[2]
    assert second[2].status == JobStatus.PENDING


def test_already_generated_placements_are_completed():
    jobs = build_jobs(designs(), {"A_back": "https://images.test/1.png"})

    back = jobs[1]
    assert back.status == JobStatus.COMPLETED
    assert back.image_url == "https://images.test/1.png"
    assert jobs[0].status == JobStatus.PENDING
