from orientbrain import EntityStore


def test_get_or_create_reuses_entry():
    store = EntityStore(history_size=8, shot_history_size=4)
    a = store.get_or_create(3)
    assert store.get_or_create(3) is a
    assert a.orientation_history.capacity == 8
    assert a.shot_history.capacity == 4
    assert 3 in store
    assert store.get(4) is None


def test_evict_stale():
    store = EntityStore()
    store.get_or_create(1).last_update_time = 0.0
    store.get_or_create(2).last_update_time = 9.0
    assert store.evict_stale(now=10.0, threshold=5.0) == 1
    assert store.ids() == [2]
    store.reset_all()
    assert len(store) == 0


def test_bucket_key():
    store = EntityStore()
    ent = store.get_or_create(1)
    assert ent.locomotion.bucket_key() == "ground_stand_still"
    ent.locomotion.in_air = True
    ent.locomotion.fake_posture = True
    ent.locomotion.running = True
    ent.locomotion.defensive = True
    assert ent.locomotion.bucket_key() == "air_fakeduck_run_defensive"
