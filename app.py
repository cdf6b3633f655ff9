"""
app.py
Streamlit Policardmed membership dashboard (admin + associate portal).
Run: streamlit run app.py
"""

from __future__ import annotations

import dataclasses
import logging

import pandas as pd
import streamlit as st

import auth
import utils
from config import configure_logging
from context import AppContext, build_context
from errors import MembershipError, ValidationError
from models import MAX_LIVES, MIN_LIVES, PAYMENT_LABELS, PLAN_NAMES, Member, MemberInput, PlanDetails
from service import add_dependent, compute_dashboard_stats, remove_dependent

logger = logging.getLogger(__name__)

st.set_page_config(page_title="Policardmed", layout="wide")


@st.cache_resource
def get_context() -> AppContext:
    # Built once per process and shared by every session
    configure_logging()
    return build_context()


def require_login():
    for key, default in (("role", None), ("username", None), ("member_id", None), ("subscription", None)):
        if key not in st.session_state:
            st.session_state[key] = default


def logout():
    sub = st.session_state.get("subscription")
    if sub is not None:
        sub.cancel()
    for key in ("role", "username", "member_id", "subscription", "draft", "edit_member_id"):
        st.session_state[key] = None
    st.success("Sessão encerrada.")


def show_error(exc: MembershipError):
    logger.warning("%s: %s", type(exc).__name__, exc)
    if isinstance(exc, ValidationError):
        for e in exc.errors:
            st.error(e)
    else:
        st.error(str(exc))


def login_screen(ctx: AppContext):
    st.title("🔐 Policardmed")

    admin_tab, associate_tab = st.tabs(["Administrativo", "Associado"])
    with admin_tab:
        username = st.text_input("Usuário", value=ctx.settings.ADMIN_USERNAME)
        password = st.text_input("Senha", type="password")
        if st.button("Entrar", type="primary"):
            identity = auth.authenticate_admin(ctx.database, username, password)
            if identity:
                st.session_state.role = "admin"
                st.session_state.username = identity.username
                st.rerun()
            else:
                st.error("Credenciais de administrador inválidas.")

    with associate_tab:
        cpf = st.text_input("CPF", placeholder="Digite o seu CPF")
        if st.button("Aceder"):
            try:
                member = auth.authenticate_associate(ctx.members, cpf)
            except MembershipError as exc:
                show_error(exc)
                return
            if member is None:
                st.error("Nenhum associado encontrado com este CPF.")
            else:
                st.session_state.role = "associate"
                st.session_state.member_id = member.id
                st.rerun()


def force_change_password_screen(ctx: AppContext):
    st.title("⚠️ Alterar senha (obrigatório)")

    st.warning("Altere a senha padrão antes de usar o sistema.")
    new1 = st.text_input("Nova senha", type="password")
    new2 = st.text_input("Confirmar nova senha", type="password")

    if st.button("Atualizar senha", type="primary"):
        if len(new1) < 6:
            st.error("A senha deve ter pelo menos 6 caracteres.")
            return
        if new1 != new2:
            st.error("As senhas não coincidem.")
            return
        auth.change_password(ctx.database, st.session_state.username, new1, rounds=ctx.settings.BCRYPT_ROUNDS)
        st.success("Senha atualizada.")
        st.rerun()


# ---------- Live member list ----------

def current_members(ctx: AppContext) -> list[Member]:
    sub = st.session_state.get("subscription")
    if sub is None or sub.cancelled:
        sub = ctx.service.list_members()
        st.session_state.subscription = sub
        return next(sub)
    return sub.poll()


def dashboard_page(members: list[Member]):
    st.header("📊 Dashboard")

    stats = compute_dashboard_stats(members, utils.now_utc())

    c1, c2, c3, c4, c5 = st.columns(5)
    c1.metric("Associados ativos", stats.active_members)
    c2.metric("Vidas cobertas", stats.total_lives)
    c3.metric("Novos no mês", stats.new_this_month)
    c4.metric("Vencendo em 30 dias", stats.expiring_soon)
    c5.metric("Inadimplentes", stats.defaulting)

    st.divider()

    st.subheader("Associados por plano")
    cols = st.columns(len(PLAN_NAMES))
    for col, (plan_type, plan_name) in zip(cols, PLAN_NAMES.items()):
        col.metric(plan_name, stats.plan_distribution.get(plan_type, 0))


def add_dependent_to_draft():
    # Runs before the rerun, so the input keys can still be reset
    state = st.session_state
    state["draft"] = add_dependent(state["draft"], state.get("dep_name", ""), state.get("dep_rel", ""))
    state["dep_name"] = ""
    state["dep_rel"] = ""


def member_form(ctx: AppContext, existing: Member | None = None):
    if existing:
        st.subheader(f"✏️ Editar associado ({existing.primary_member_name})")
    else:
        st.subheader("➕ Adicionar associado")

    # Draft keeps dependents between reruns until saved
    draft = st.session_state.get("draft")
    if draft is None or (existing and getattr(draft, "id", None) != existing.id) or (not existing and isinstance(draft, Member)):
        draft = existing or MemberInput()
        st.session_state.draft = draft

    plan_types = list(PLAN_NAMES.keys())
    col1, col2 = st.columns(2)
    with col1:
        name = st.text_input("Nome completo*", value=draft.primary_member_name)
        cpf = st.text_input("CPF*", value=draft.cpf, disabled=bool(existing))
        email = st.text_input("Email", value=draft.email or "")
        phone = st.text_input("Telefone", value=draft.phone or "")
        address = st.text_input("Endereço", value=draft.address or "")
    with col2:
        current_type = draft.plan_details.type
        plan_type = st.selectbox(
            "Tipo de plano*",
            options=plan_types,
            index=plan_types.index(current_type) if current_type in plan_types else 0,
            format_func=lambda t: PLAN_NAMES[t],
        )
        lives = st.number_input(
            "Número de vidas*", min_value=MIN_LIVES, max_value=MAX_LIVES,
            value=min(max(draft.plan_details.number_of_lives, MIN_LIVES), MAX_LIVES), step=1,
        )
        payment_status = None
        if existing:
            statuses = list(PAYMENT_LABELS.keys())
            payment_status = st.selectbox(
                "Status do pagamento*",
                options=statuses,
                index=statuses.index(existing.payment_status) if existing.payment_status in statuses else 0,
                format_func=lambda s: PAYMENT_LABELS[s],
            )

    st.markdown("**Dependentes**")
    for index, dep in enumerate(draft.dependents):
        d1, d2 = st.columns([4, 1])
        d1.write(f"{dep.name} ({dep.relationship})")
        if d2.button("Remover", key=f"rm_dep_{index}"):
            st.session_state.draft = remove_dependent(draft, index)
            st.rerun()
    n1, n2, n3 = st.columns([2, 2, 1])
    n1.text_input("Nome do dependente", key="dep_name")
    n2.text_input("Parentesco", key="dep_rel")
    n3.button("Adicionar", on_click=add_dependent_to_draft)

    if st.button("Salvar associado" if not existing else "Atualizar associado", type="primary"):
        plan = PlanDetails(type=plan_type, number_of_lives=int(lives))
        try:
            if existing:
                changes = {
                    "primary_member_name": name,
                    "email": email.strip() or None,
                    "phone": phone.strip() or None,
                    "address": address.strip() or None,
                    "plan_details": plan,
                    "dependents": draft.dependents,
                    "payment_status": payment_status,
                }
                ctx.service.update_member(existing.id, changes)
                st.success("Associado atualizado.")
            else:
                data = dataclasses.replace(
                    draft,
                    primary_member_name=name,
                    cpf=cpf,
                    email=email.strip() or None,
                    phone=phone.strip() or None,
                    address=address.strip() or None,
                    plan_details=plan,
                )
                ctx.service.create_member(data)
                st.success("Associado adicionado.")
        except MembershipError as exc:
            show_error(exc)
            return
        st.session_state.draft = None
        st.session_state.edit_member_id = None
        st.rerun()


def members_page(ctx: AppContext, members: list[Member]):
    st.header("👥 Associados")

    with st.sidebar:
        st.subheader("Busca")
        search = st.text_input("Buscar (nome/CPF)")

    shown = members
    if search.strip():
        term = search.strip().lower()
        shown = [m for m in members if term in m.primary_member_name.lower() or term in m.cpf]

    df = utils.members_frame(shown)
    st.dataframe(
        df[["primary_member_name", "cpf", "plan_name", "plan_end_date", "payment_status"]],
        use_container_width=True,
        hide_index=True,
    )

    st.divider()

    by_id = {m.id: m for m in shown}
    colA, colB = st.columns([1, 2])
    with colA:
        st.subheader("Selecionar associado")
        selected_id = st.selectbox(
            "Associado",
            options=["(nenhum)"] + list(by_id),
            format_func=lambda i: i if i == "(nenhum)" else f"{by_id[i].primary_member_name} ({by_id[i].cpf})",
        )

    with colB:
        if selected_id != "(nenhum)":
            m = by_id[selected_id]
            st.subheader("Ações")
            st.write(f"Pagamento: **{PAYMENT_LABELS.get(m.payment_status, m.payment_status)}**")
            c1, c2 = st.columns(2)
            with c1:
                if st.button("Editar"):
                    st.session_state.edit_member_id = m.id
                    st.session_state.draft = None
                    st.rerun()
            with c2:
                if st.button("Alternar pagamento"):
                    try:
                        ctx.service.toggle_payment_status(m.id)
                    except MembershipError as exc:
                        show_error(exc)
                    else:
                        st.rerun()

    st.divider()

    edit_id = st.session_state.get("edit_member_id")
    if edit_id:
        existing = next((m for m in members if m.id == edit_id), None)
        if existing:
            member_form(ctx, existing=existing)
        if st.button("Cancelar edição"):
            st.session_state.edit_member_id = None
            st.session_state.draft = None
            st.rerun()
    else:
        member_form(ctx, existing=None)


def reports_page(members: list[Member]):
    st.header("🧾 Relatórios")

    st.subheader("Exportar associados (CSV)")
    if members:
        st.download_button(
            "Baixar associados.csv",
            data=utils.members_to_csv_bytes(members),
            file_name="associados.csv",
            mime="text/csv",
        )
    else:
        st.caption("Nenhum associado para exportar.")

    st.divider()

    st.subheader("Resumo por plano")
    st.dataframe(utils.plan_summary(members), use_container_width=True, hide_index=True)

    st.divider()

    st.subheader("Vencendo nos próximos 30 dias")
    expiring = utils.expiring_members(members, utils.now_utc())
    if expiring:
        df = utils.members_frame(expiring)
        st.dataframe(df[["primary_member_name", "cpf", "phone", "plan_end_date"]], use_container_width=True, hide_index=True)
    else:
        st.caption("Nenhum plano vencendo nos próximos 30 dias.")

    st.divider()

    st.subheader("Inadimplentes")
    delinquent = utils.delinquent_members(members)
    if delinquent:
        df = utils.members_frame(delinquent)
        st.dataframe(df[["primary_member_name", "cpf", "phone", "email"]], use_container_width=True, hide_index=True)
    else:
        st.caption("Nenhum associado em débito.")


def settings_page(ctx: AppContext):
    st.header("⚙️ Configurações")

    st.subheader("Alterar senha")
    p1 = st.text_input("Nova senha", type="password")
    p2 = st.text_input("Confirmar nova senha", type="password")
    if st.button("Atualizar senha", type="primary"):
        if len(p1) < 6:
            st.error("A senha deve ter pelo menos 6 caracteres.")
        elif p1 != p2:
            st.error("As senhas não coincidem.")
        else:
            auth.change_password(ctx.database, st.session_state.username, p1, rounds=ctx.settings.BCRYPT_ROUNDS)
            st.success("Senha atualizada.")

    st.divider()

    st.subheader("Dados de exemplo")
    st.caption("Insere 3 associados de exemplo (CPFs já cadastrados são ignorados).")
    if st.button("Inserir dados de exemplo"):
        try:
            created = utils.insert_sample_data(ctx.service)
        except MembershipError as exc:
            show_error(exc)
        else:
            st.success(f"{len(created)} associado(s) inserido(s).")
            st.rerun()


def admin_app(ctx: AppContext):
    st.sidebar.title("💳 Policardmed")
    st.sidebar.caption(f"Conectado como: {st.session_state.username}")

    pages = ["Dashboard", "Associados", "Relatórios", "Configurações"]
    if st.session_state.get("page") not in pages:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navegar", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Sair"):
        logout()
        st.rerun()

    try:
        members = current_members(ctx)
    except MembershipError as exc:
        logger.error("Failed to load members: %s", exc)
        st.error("Falha ao carregar associados.")
        return

    if st.session_state.page == "Dashboard":
        dashboard_page(members)
    elif st.session_state.page == "Associados":
        members_page(ctx, members)
    elif st.session_state.page == "Relatórios":
        reports_page(members)
    elif st.session_state.page == "Configurações":
        settings_page(ctx)


def associate_panel(ctx: AppContext):
    if st.sidebar.button("Sair"):
        logout()
        st.rerun()

    try:
        member = ctx.service.get_member(st.session_state.member_id)
    except MembershipError as exc:
        show_error(exc)
        return

    st.header(f"Bem-vindo(a), {member.primary_member_name}!")
    st.caption("Este é o seu portal Policardmed.")

    c1, c2 = st.columns(2)
    with c1:
        st.write(f"**CPF:** {member.cpf}")
        st.write(f"**Plano:** {member.plan_details.name}")
        st.write(f"**Vidas:** {member.plan_details.number_of_lives}")
    with c2:
        st.write(f"**Início:** {utils.format_date(member.plan_start_date)}")
        st.write(f"**Vencimento:** {utils.format_date(member.plan_end_date)}")
        st.write(f"**Pagamento:** {PAYMENT_LABELS.get(member.payment_status, member.payment_status)}")

    st.subheader("Dependentes")
    if member.dependents:
        st.dataframe(
            pd.DataFrame([{"nome": d.name, "parentesco": d.relationship} for d in member.dependents]),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("Nenhum dependente cadastrado.")


# --------- App entry ---------

def run():
    ctx = get_context()
    require_login()

    if st.session_state.role is None:
        login_screen(ctx)
        return

    if st.session_state.role == "associate":
        associate_panel(ctx)
        return

    # Force password change on first login after DB creation
    if ctx.database.is_force_password_change():
        force_change_password_screen(ctx)
        return

    admin_app(ctx)


if __name__ == "__main__":
    run()
