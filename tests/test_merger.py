from rockhalo.merger import HaloSpan, calculate_descendants, particle_halo_map


def test_particle_halo_map_assigns_owner():
    halos = [HaloSpan(7, 0, 2), HaloSpan(9, 2, 1)]
    mapping = particle_halo_map(halos, [100, 101, 102])
    assert mapping == {100: 7, 101: 7, 102: 9}


def test_later_halo_overrides_shared_particle():
    halos = [HaloSpan(7, 0, 2), HaloSpan(9, 1, 1)]
    mapping = particle_halo_map(halos, [100, 101])
    assert mapping[101] == 9


def test_majority_descendant():
    halos1 = [HaloSpan(1, 0, 4)]
    particles1 = [10, 11, 12, 13]
    halos2 = [HaloSpan(20, 0, 1), HaloSpan(30, 1, 3)]
    particles2 = [10, 11, 12, 13]
    assert calculate_descendants(halos1, particles1, halos2, particles2) == [30]


def test_tie_goes_to_smallest_id():
    halos1 = [HaloSpan(1, 0, 4)]
    halos2 = [HaloSpan(50, 0, 2), HaloSpan(40, 2, 2)]
    ids = [1, 2, 3, 4]
    assert calculate_descendants(halos1, ids, halos2, ids) == [40]


def test_no_shared_particles_gives_minus_one():
    halos1 = [HaloSpan(1, 0, 2), HaloSpan(2, 2, 1)]
    halos2 = [HaloSpan(5, 0, 1)]
    result = calculate_descendants(halos1, [1, 2, 3], halos2, [3])
    assert result == [-1, 5]


def test_empty_later_catalogue():
    halos1 = [HaloSpan(1, 0, 1)]
    assert calculate_descendants(halos1, [1], [], []) == [-1]