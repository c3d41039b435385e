from services.contract_classifier import (
    caption_forces_contract,
    classify,
    extract_role_hint,
    filename_hints_contract,
    has_structure,
)

from conftest import CONTRACT_TEXT, INVOICE_TEXT, SHORT_TEXT


def test_short_text_without_legal_keywords_has_no_structure():
    assert len(SHORT_TEXT) < 200
    assert has_structure(SHORT_TEXT) is False


def test_empty_text_has_no_structure():
    assert has_structure("") is False
    assert has_structure(None) is False


def test_contract_has_structure():
    assert has_structure(CONTRACT_TEXT) is True


def test_long_noise_without_sentences_has_no_structure():
    noise = "ab12 cd34 ef56 gh78 ij90 kl12 mn34 op56 " * 20
    assert has_structure(noise) is False


def test_short_text_with_legal_keywords_is_excused():
    text = (
        "1.1. Исполнитель обязуется оказать услуги.\n"
        "1.2. Заказчик обязуется оплатить услуги."
    )
    assert len(text) < 200
    assert has_structure(text) is True


def test_contract_is_classified_as_contract():
    result = classify(CONTRACT_TEXT)
    assert result.is_contract is True
    assert result.kind == "contract"
    assert result.contract_score >= 3


def test_invoice_header_rejects_document():
    result = classify(INVOICE_TEXT)
    assert result.is_contract is False
    assert result.kind == "invoice"


def test_invoice_header_outside_window_is_not_a_header():
    text = CONTRACT_TEXT + "\n" + "Приложение: счет на оплату № 7 будет выставлен отдельно."
    assert classify(text).is_contract is True


def test_keyword_only_contract_passes_threshold():
    text = "Настоящий договор заключен между сторонами. Исполнитель обязуется выполнить работы для заказчика."
    result = classify(text)
    assert result.is_contract is True


def test_contract_with_payment_terms_stays_a_contract():
    text = (
        "Договор между сторонами. Исполнитель выполняет работы, Заказчик принимает их. "
        "Оплата производится в течение пяти дней. Сумма включает НДС. Цена фиксирована. "
        "Порядок расчетов определяется сторонами, расчеты ведутся в рублях."
    )
    result = classify(text)
    assert result.is_contract is True
    assert result.kind == "contract"


def test_settlement_words_are_not_invoice_terms():
    assert classify("Расчеты и порядок расчетов согласованы, расчетный период один месяц.").invoice_score == 0
    assert classify("Оплата на расчетный счет.").invoice_score == 3


def test_invoice_table_without_header_is_invoice():
    text = (
        "Поставщик ООО «Альфа»\n"
        "Наименование | Количество | Цена | Сумма\n"
        "Услуги связи | 1 | 500 | 500\n"
        "Итого: 500\n"
    )
    result = classify(text)
    assert result.is_contract is False
    assert result.kind == "invoice"


def test_plain_letter_is_undetermined():
    text = "Добрый день! Напоминаем о встрече в понедельник в офисе компании на втором этаже."
    result = classify(text)
    assert result.is_contract is False
    assert result.kind == "undetermined"


def test_yo_is_folded_before_matching():
    text = "СЧЁТ на оплату № 55 от 10.01.2024\nИтого к оплате: 1000 руб."
    assert classify(text).kind == "invoice"


def test_classification_is_deterministic():
    first = classify(CONTRACT_TEXT)
    second = classify(CONTRACT_TEXT)
    assert first == second


def test_caption_forces_contract():
    assert caption_forces_contract("Это договор аренды") is True
    assert caption_forces_contract("сделай АНАЛИЗ пожалуйста") is True
    assert caption_forces_contract("посмотри файл") is False
    assert caption_forces_contract(None) is False


def test_filename_hints_contract():
    assert filename_hints_contract("Договор_поставки_2024.pdf") is True
    assert filename_hints_contract("scan_001.pdf") is False
    assert filename_hints_contract(None) is False


def test_role_hint_is_extracted_and_capitalised():
    assert extract_role_hint("я заказчик") == "Заказчик"
    assert extract_role_hint("Мы - арендатор, проверьте") == "Арендатор"
    assert extract_role_hint("роль: подрядчик") == "Подрядчик"


def test_no_role_hint():
    assert extract_role_hint("проверьте договор") is None
    assert extract_role_hint(None) is None
