from conftest import ticket_payload

from fieldservice.cache import CacheTags, TagCache, cache, cached_query, revalidate_cache
from fieldservice.services.customers import get_customers, update_customer
from fieldservice.services.tickets import create_ticket, get_technicians_for_assignment
from fieldservice.services.users import create_user


def test_entries_drop_when_any_tag_is_revalidated():
    store = TagCache()
    store.set("a", [1], ["tickets", "reports"])
    store.set("b", [2], ["parts"])

    assert store.revalidate(["reports"]) == 1

    assert store.get("a") == (False, None)
    assert store.get("b") == (True, [2])


def test_cached_values_are_copies():
    store = TagCache()
    store.set("a", {"items": [1]}, ["x"])

    _, value = store.get("a")
    value["items"].append(2)

    assert store.get("a") == (True, {"items": [1]})


def test_cached_query_keys_on_arguments_and_derived_tags():
    calls = []

    @cached_query("square", tags=["numbers"], tag_args=lambda n: [f"number-{n}"])
    def square(db, n):
        calls.append(n)
        return n * n

    assert square(None, 3) == 9
    assert square(None, 3) == 9
    assert square(None, 4) == 16
    assert calls == [3, 4]

    revalidate_cache(["number-3"])
    square(None, 3)
    square(None, 4)
    assert calls == [3, 4, 3]


def test_writes_revalidate_cached_reads(db, admin, customer):
    assert get_customers(db)[0]["company_name"] == "Corner Cafe"

    update_customer(db, admin, customer.id, {"company_name": "Corner Cafe & Bakery"})

    assert get_customers(db)[0]["company_name"] == "Corner Cafe & Bakery"


def test_new_technician_appears_in_assignment_list(db, admin, tech1):
    assert [t["name"] for t in get_technicians_for_assignment(db)] == ["Taylor Tech"]

    create_user(db, admin, {"email": "new.tech@example.com", "password": "secret123", "name": "Avery New", "role": "technician"})

    assert [t["name"] for t in get_technicians_for_assignment(db)] == ["Avery New", "Taylor Tech"]


def test_ticket_create_revalidates_call_admin_tag(db, call_admin, customer, machines, fixed_now):
    cache.set(("probe",), True, [CacheTags.call_admin(call_admin.id)])

    create_ticket(db, call_admin, ticket_payload(machines[:1], customer))

    assert cache.get(("probe",)) == (False, None)
